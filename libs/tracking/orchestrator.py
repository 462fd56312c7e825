"""
Batch orchestration of external queries for one tracking job.

Phases and progress:
1. generate  (0 -> 30)    prompts from the PromptSource, templated fallback on failure
2. execute   (30 -> end)  one resilient external call per prompt, sequential or in
                          concurrency-limited batches with a strict barrier
3. aggregate (-> 100)     MetricsAggregator over all results

Any terminal failure while executing aborts the job; partial results are
discarded.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional, Protocol, Sequence

import structlog

from libs.common.settings import Settings
from libs.queue.base import ProgressSink
from libs.resilience.retry import ResilientExecutor
from libs.tracking.metrics import MetricsAggregator
from libs.tracking.models import QueryResponse, QueryResult, TrackingMode, TrackingResult
from libs.tracking.prompts import fallback_prompts, frame_prompt

logger = structlog.get_logger(__name__)

GENERATE_START = 10
GENERATE_END = 30
AGGREGATE_START = 90


class PromptSource(Protocol):
    async def generate(self, category: str, count: int) -> List[str]: ...


class ExternalQuery(Protocol):
    async def ask(self, prompt: str, *, brands: Sequence[str]) -> QueryResponse: ...


@dataclass(frozen=True)
class BatchConfig:
    """Execution knobs for one orchestrator. Delays in seconds."""

    prompt_count: int = 5
    max_prompt_count: int = 20
    concurrency_limit: int = 1
    rate_limit_delay: float = 0.3
    execute_phase_end: int = 80

    @classmethod
    def from_settings(cls, settings: Settings) -> "BatchConfig":
        return cls(
            prompt_count=settings.default_prompt_count,
            max_prompt_count=settings.max_prompt_count,
            concurrency_limit=settings.concurrency_limit,
            rate_limit_delay=settings.rate_limit_delay_ms / 1000,
            execute_phase_end=settings.execute_phase_end,
        )


class BatchOrchestrator:
    """
    Runs the prompts of a tracking job through the resilient executor.

    Usage:
        orchestrator = BatchOrchestrator(prompt_source, external_query, executor)
        result = await orchestrator.execute("CRM software", ["HubSpot"], ["Salesforce"], "normal", sink)
    """

    def __init__(
        self,
        prompt_source: PromptSource,
        external_query: ExternalQuery,
        executor: ResilientExecutor,
        config: Optional[BatchConfig] = None,
        aggregator: Optional[MetricsAggregator] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.prompt_source = prompt_source
        self.external_query = external_query
        self.executor = executor
        self.config = config or BatchConfig()
        self.aggregator = aggregator or MetricsAggregator()
        self._sleep = sleep

    async def execute(
        self,
        category: str,
        brands: Sequence[str],
        competitors: Sequence[str],
        mode: TrackingMode,
        progress: ProgressSink,
        *,
        prompt_count: Optional[int] = None,
    ) -> TrackingResult:
        """
        Run one tracking job end to end.

        Args:
            category: Product/service category to generate prompts for
            brands: Tracked brands
            competitors: Tracked competitors
            mode: "normal" or "competitor"
            progress: Sink receiving progress percentages at phase boundaries
            prompt_count: Override for the configured number of prompts

        Returns:
            The completed result bundle

        Raises:
            RetryExhausted: When any prompt fails terminally
        """
        await progress(GENERATE_START)
        prompts = await self.generate_prompts(category, prompt_count or self.config.prompt_count)
        await progress(GENERATE_END)

        all_brands = [*brands, *competitors]
        if self.config.concurrency_limit > 1:
            results = await self._run_batches(prompts, all_brands, competitors, mode, progress)
        else:
            results = await self._run_sequential(prompts, all_brands, competitors, mode, progress)

        if self.config.execute_phase_end < AGGREGATE_START:
            await progress(AGGREGATE_START)
        metrics = self.aggregator.compute(results, brands, competitors)
        await progress(100)

        logger.info(
            "Tracking batch finished",
            category=category,
            prompts=len(prompts),
            total_mentions=metrics.summary.total_mentions,
        )
        return TrackingResult(
            category=category,
            brands=list(brands),
            competitors=list(competitors),
            mode=mode,
            metrics=metrics,
        )

    async def generate_prompts(self, category: str, count: int) -> List[str]:
        """Prompts for ``category``; falls back to templates and never raises."""
        count = max(1, min(count, self.config.max_prompt_count))
        try:
            prompts = [p.strip() for p in await self.prompt_source.generate(category, count) if p and p.strip()]
        except Exception as e:
            logger.warning(
                "Prompt generation failed, using fallback templates",
                category=category,
                error=str(e),
                error_type=type(e).__name__,
            )
            return fallback_prompts(category, count)

        if not prompts:
            logger.warning("Prompt source returned no prompts, using fallback templates", category=category)
            return fallback_prompts(category, count)
        return prompts[:count]

    def _execute_progress(self, done: int, total: int) -> int:
        span = self.config.execute_phase_end - GENERATE_END
        return GENERATE_END + (done * span) // total

    async def _query(
        self,
        prompt: str,
        all_brands: Sequence[str],
        competitors: Sequence[str],
        mode: TrackingMode,
    ) -> QueryResult:
        final_prompt = frame_prompt(prompt, mode, competitors)
        response = await self.executor.with_retry(
            lambda: self.external_query.ask(final_prompt, brands=all_brands)
        )
        return QueryResult(prompt=final_prompt, response=response.text, mentions=response.mentions, mode=mode)

    async def _run_sequential(self, prompts, all_brands, competitors, mode, progress) -> List[QueryResult]:
        results: List[QueryResult] = []
        total = len(prompts)
        for i, prompt in enumerate(prompts):
            results.append(await self._query(prompt, all_brands, competitors, mode))
            await progress(self._execute_progress(i + 1, total))
            if i < total - 1:
                await self._sleep(self.config.rate_limit_delay)
        return results

    async def _run_batches(self, prompts, all_brands, competitors, mode, progress) -> List[QueryResult]:
        results: List[QueryResult] = []
        total = len(prompts)
        size = self.config.concurrency_limit
        for start in range(0, total, size):
            batch = prompts[start:start + size]
            # Every call settles before the next batch starts, even on failure
            outcomes = await asyncio.gather(
                *(self._query(prompt, all_brands, competitors, mode) for prompt in batch),
                return_exceptions=True,
            )
            for outcome in outcomes:
                if isinstance(outcome, BaseException):
                    logger.error(
                        "Batch failed",
                        batch_start=start,
                        batch_size=len(batch),
                        error=str(outcome),
                    )
                    raise outcome
            results.extend(outcomes)

            await progress(self._execute_progress(start + len(batch), total))
            if start + size < total:
                await self._sleep(self.config.rate_limit_delay)
        return results
