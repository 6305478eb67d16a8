from __future__ import annotations


class ConfigError(ValueError):
    pass


class ExternalServiceError(RuntimeError):
    """A tracker, code-host, generative or webhook call did not succeed."""

    def __init__(self, message: str, status: int | None = None, transient: bool = False) -> None:
        super().__init__(message)
        self.status = status
        self.transient = transient


class NotFoundError(ExternalServiceError):
    pass


class GenerationError(ExternalServiceError):
    pass


class InsufficientDiskSpaceError(OSError):
    pass
