"""LLM access for note-synth."""

from note_synth.llm.client import LLMClient, LLMConfig, LLMError, is_retryable_error

__all__ = [
    "LLMClient",
    "LLMConfig",
    "LLMError",
    "is_retryable_error",
]
