"""Remote backend implementations."""

from .base import ResponsesBackend
from .openai import OpenAIBackend

__all__ = [
    "OpenAIBackend",
    "ResponsesBackend",
]
