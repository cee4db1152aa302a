"""
LLM library - chat-completion access with batching and cancellation.

Usage:
    from llm import ChatCompletionClient, process_in_batches

    async with ChatCompletionClient(api_key, model) as client:
        data = await client.send_json(system, user, temperature=0.2)
"""

from .src.batching import process_in_batches
from .src.cancellation import CancellationController, CancellationToken, OperationKind
from .src.client import ChatCompletionClient
from .src.errors import (
    AbortedError,
    ConfigurationError,
    DomainPipelineError,
    LLMError,
    MalformedResponseError,
    PipelineError,
    RoundError,
    StageError,
    TransportError,
    describe_error,
)
from .src.models import ChatMessage, ChatOptions, Role

__all__ = [
    "process_in_batches",
    "CancellationController",
    "CancellationToken",
    "OperationKind",
    "ChatCompletionClient",
    "AbortedError",
    "ConfigurationError",
    "DomainPipelineError",
    "LLMError",
    "MalformedResponseError",
    "PipelineError",
    "RoundError",
    "StageError",
    "TransportError",
    "describe_error",
    "ChatMessage",
    "ChatOptions",
    "Role",
]
