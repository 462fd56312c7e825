"""
OpenAI chat-completions clients for prompt generation and tracked queries.

``OpenAIPromptSource`` asks the model for a JSON array of search prompts.
``OpenAIExternalQuery`` answers one prompt and locates brand mentions in
the answer. SDK errors are mapped onto the engine's tagged errors so the
retry policy can tell transient from permanent failures.
"""

from __future__ import annotations

import json
from typing import List, Optional, Sequence

import openai
import structlog
from openai import AsyncOpenAI

from libs.common.errors import PermanentError, TrackingError, TransientError
from libs.common.settings import Settings
from libs.tracking.mentions import find_mentions
from libs.tracking.models import QueryResponse

logger = structlog.get_logger(__name__)

# 4xx statuses the API documents as worth retrying
RETRYABLE_CLIENT_STATUSES = frozenset({408, 409, 429})

PROMPT_GENERATION_SYSTEM = """You are an expert at generating realistic search prompts that users would ask AI assistants when looking for products or services in a specific category.

Generate {count} diverse, natural prompts that someone might ask when researching "{category}".

Requirements:
- Mix different intent types: comparison, recommendation, problem-solving, feature-specific
- Vary prompt length (15-30 words)
- Include context (team size, use case, constraints)
- Make them conversational and realistic
- Cover different angles: pricing, features, integrations, ease of use, etc.

Return ONLY a JSON array of strings (the prompts), nothing else."""

QUERY_SYSTEM = """You are a helpful AI assistant that provides comprehensive, unbiased recommendations.
When discussing products or services, naturally mention specific brand names when relevant.
Provide detailed comparisons and explain why you recommend certain options.
Include specific URLs or documentation links when mentioning brands (you can use placeholder URLs)."""


def map_openai_error(error: Exception) -> TrackingError:
    """Translate an ``openai`` SDK error into a TransientError or PermanentError."""
    if isinstance(error, TrackingError):
        return error
    if isinstance(error, openai.APIStatusError):
        status = error.status_code
        message = f"AI query failed ({status}): {error.message}"
        if status >= 500 or status in RETRYABLE_CLIENT_STATUSES:
            return TransientError(message, status_code=status)
        return PermanentError(message, status_code=status)
    if isinstance(error, (openai.APITimeoutError, openai.APIConnectionError)):
        return TransientError(f"AI query failed: {error}")
    if isinstance(error, openai.OpenAIError):
        return PermanentError(f"AI query failed: {error}")
    return TransientError(f"AI query failed: {error}")


def _build_client(settings: Settings) -> AsyncOpenAI:
    # Retries are owned by the resilient executor
    return AsyncOpenAI(api_key=settings.openai_api_key, max_retries=0)


class OpenAIPromptSource:
    """Generates search prompts for a category."""

    def __init__(self, settings: Settings, client: Optional[AsyncOpenAI] = None):
        self.model = settings.openai_model
        self.client = client or _build_client(settings)

    async def generate(self, category: str, count: int) -> List[str]:
        response = await self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": PROMPT_GENERATION_SYSTEM.format(count=count, category=category)},
                {"role": "user", "content": f"Generate {count} prompts for category: {category}"},
            ],
            temperature=0.8,
            max_tokens=1500,
        )
        content = response.choices[0].message.content or ""
        prompts = json.loads(content)
        if not isinstance(prompts, list):
            raise ValueError("Prompt generation did not return a JSON array")

        logger.debug("Prompts generated", category=category, requested=count, received=len(prompts))
        return [str(p) for p in prompts]


class OpenAIExternalQuery:
    """Answers a single prompt and reports mentions of the tracked brands."""

    def __init__(self, settings: Settings, client: Optional[AsyncOpenAI] = None):
        self.model = settings.openai_model
        self.temperature = settings.openai_temperature
        self.max_tokens = settings.openai_max_tokens
        self.client = client or _build_client(settings)

    async def ask(self, prompt: str, *, brands: Sequence[str]) -> QueryResponse:
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": QUERY_SYSTEM},
                    {"role": "user", "content": prompt},
                ],
                temperature=self.temperature,
                max_tokens=self.max_tokens,
            )
        except Exception as e:
            mapped = map_openai_error(e)
            logger.warning(
                "AI query failed",
                error=str(e),
                error_type=type(e).__name__,
                kind=mapped.kind.value,
            )
            raise mapped from e

        answer = response.choices[0].message.content or ""
        return QueryResponse(text=answer, mentions=find_mentions(answer, brands))
