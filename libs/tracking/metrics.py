"""
Visibility metrics over a batch of query results.

For every tracked brand (brands first, then competitors):
- total_mentions: sum of mention counts
- visibility_score: % of prompts mentioning the brand at least once
- citation_share: brand's share of all tracked mentions
- mentioned_in / missing_in: prompts with and without the brand
- contexts / cited_pages: excerpts and (deduplicated) citations
"""

from typing import Dict, Sequence

from libs.tracking.models import EntityStats, MetricsReport, MetricsSummary, QueryResult


def _percentage(part: int, whole: int) -> float:
    if whole <= 0:
        return 0.0
    # Multiply first so exact fractions (2 of 5 -> 40.0) stay exact
    return round(part * 100 / whole, 2)


class MetricsAggregator:
    """Pure reduction of query results into a MetricsReport. Safe to recompute."""

    def compute(
        self,
        query_results: Sequence[QueryResult],
        brands: Sequence[str],
        competitors: Sequence[str] = (),
    ) -> MetricsReport:
        total_prompts = len(query_results)
        stats: Dict[str, EntityStats] = {}
        for brand in [*brands, *competitors]:
            stats.setdefault(brand, EntityStats(total_prompts=total_prompts))

        for result in query_results:
            mentioned = set()
            for mention in result.mentions:
                entry = stats.get(mention.brand)
                if entry is None:
                    continue
                entry.total_mentions += mention.count
                if mention.brand not in mentioned:
                    entry.mentioned_in.append(result.prompt)
                entry.contexts.extend(mention.contexts)
                entry.cited_pages.extend(mention.citations)
                mentioned.add(mention.brand)

            for brand, entry in stats.items():
                if brand not in mentioned:
                    entry.missing_in.append(result.prompt)

        grand_total = sum(entry.total_mentions for entry in stats.values())
        for entry in stats.values():
            entry.citation_share = _percentage(entry.total_mentions, grand_total)
            entry.visibility_score = _percentage(len(entry.mentioned_in), total_prompts)
            entry.cited_pages = list(dict.fromkeys(entry.cited_pages))

        return MetricsReport(
            brand_stats=stats,
            summary=MetricsSummary(
                total_prompts=total_prompts,
                total_mentions=grand_total,
                tracked_count=len(brands),
                competitor_count=len(competitors),
            ),
            prompt_results=list(query_results),
        )

