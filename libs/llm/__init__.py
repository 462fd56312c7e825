"""OpenAI-backed prompt source and external query service."""

from libs.llm.openai_client import OpenAIExternalQuery, OpenAIPromptSource, map_openai_error

__all__ = ["OpenAIExternalQuery", "OpenAIPromptSource", "map_openai_error"]
