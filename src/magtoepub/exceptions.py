"""Custom exceptions for MagToEpub."""

from pathlib import Path


class MagtoepubError(Exception):
    """Base exception class for MagToEpub."""

    pass


class ConfigurationError(MagtoepubError):
    """Configuration error."""

    pass


class DocumentLoadError(MagtoepubError):
    """The input document could not be opened or parsed."""

    def __init__(self, file_path: Path, message: str, cause: Exception | None = None) -> None:
        self.file_path = file_path
        self.cause = cause
        super().__init__(f"Could not load {file_path}: {message}")


class LLMError(MagtoepubError):
    """LLM-related error."""

    pass


class RateLimitError(LLMError):
    """Rate limit exceeded."""

    status_code = 429

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or "Rate limited (429)")


class ImageProcessingError(MagtoepubError):
    """Error during image processing."""

    pass


class ConversionError(MagtoepubError):
    """Text generation failed and the run cannot continue."""

    def __init__(self, message: str, cause: Exception | None = None) -> None:
        self.cause = cause
        super().__init__(message)


class PackagingError(MagtoepubError):
    """The EPUB archive is structurally incomplete."""

    pass
