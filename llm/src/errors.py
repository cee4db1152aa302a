"""
Error taxonomy for chat-completion calls and the pipelines built on them.

AbortedError is a deliberate stop, never a failure: pipelines let it pass
through unwrapped so callers can show "Stopped by user" instead of an error.
"""

from typing import Optional


class LLMError(Exception):
    """Base class for everything raised by the LLM layer."""


class ConfigurationError(LLMError):
    """Missing credentials, unknown item code, empty required selection."""


class TransportError(LLMError):
    """Non-2xx response or network failure."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status = status


class MalformedResponseError(LLMError):
    """2xx response whose content is not the JSON/fields we asked for."""

    def __init__(self, message: str, content: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.content = content


class AbortedError(LLMError):
    """The cancellation token fired before the call settled."""

    def __init__(self, reason: str = "stopped by user"):
        super().__init__(reason)
        self.reason = reason


class PipelineError(LLMError):
    """
    Wraps a Transport/Malformed error with the place it happened.

    Attributes:
        subject: What was being processed (domain, keyword, concept, stage)
        cause: The underlying error
    """

    def __init__(self, message: str, subject: str = "", cause: Optional[BaseException] = None):
        super().__init__(message)
        self.message = message
        self.subject = subject
        self.cause = cause


class DomainPipelineError(PipelineError):
    """One domain of a structured analysis failed."""

    def __init__(self, domain: str, cause: BaseException):
        super().__init__(f"Analysis failed ({domain}): {cause}", subject=domain, cause=cause)
        self.domain = domain


class RoundError(PipelineError):
    """One item of a comprehensive-analysis round failed."""

    def __init__(self, round_number: int, subject: str, cause: BaseException):
        labels = {1: "Primary concept extraction", 2: "Secondary concept deepening"}
        label = labels.get(round_number, f"Round {round_number}")
        super().__init__(f"{label} failed ({subject}): {cause}", subject=subject, cause=cause)
        self.round_number = round_number


class StageError(PipelineError):
    """A single-call service (comparison, explanation) failed."""

    def __init__(self, stage: str, cause: BaseException):
        super().__init__(f"{stage} failed: {cause}", subject=stage, cause=cause)
        self.stage = stage


def describe_error(exc: BaseException) -> str:
    """User-facing text for an error; aborts read as a stop, not a failure."""
    if isinstance(exc, AbortedError):
        return "Stopped by user"
    return str(exc) or type(exc).__name__
