"""Prompt templates used when the prompt source is unavailable, and query framing."""

from typing import List, Sequence

from libs.tracking.models import TrackingMode

FALLBACK_TEMPLATES = (
    "What is the best {category} for small businesses?",
    "Compare top {category} options",
    "Which {category} has the best features?",
    "{category} with good customer support",
    "Affordable {category} for startups",
    "{category} that integrates with popular tools",
    "What {category} do professionals recommend?",
    "Best {category} for remote teams",
    "{category} with free trial",
    "Easy to use {category} for beginners",
)


def fallback_prompts(category: str, count: int) -> List[str]:
    """Deterministic prompts derived from ``category`` (at most one per template)."""
    return [template.format(category=category) for template in FALLBACK_TEMPLATES[:max(count, 1)]]


def frame_prompt(prompt: str, mode: TrackingMode, competitors: Sequence[str]) -> str:
    """Adjust a prompt for the tracking mode before it is sent."""
    if mode == "competitor" and competitors:
        return f"From the perspective of someone who works at {competitors[0]}, {prompt}"
    return prompt
