"""Error kinds raised by the media pipeline."""

from __future__ import annotations


class OffloadError(Exception):
    """Base class for every error the pipeline raises."""


class NotFoundError(OffloadError):
    """The source file is missing and is not a recognized remote reference."""

    def __init__(self, path: str) -> None:
        super().__init__(f"File doesn't exist: {path}")
        self.path = path


class SaveFailedError(OffloadError):
    """The image could not be written to its final destination."""

    def __init__(self, destination: str, reason: str = "") -> None:
        message = f"Unable to save image to {destination}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.destination = destination


class ConversionFailedError(OffloadError):
    """The codec could not produce the target format."""


class AclUpdateFailedError(OffloadError):
    """One or more permission updates in a batch failed.

    ``code`` and ``message`` describe the first failure; ``errors`` holds
    every exception the batch reported.
    """

    def __init__(self, code: str, message: str, errors: list[BaseException] | None = None) -> None:
        super().__init__(f"{code}: {message}")
        self.code = code
        self.message = message
        self.errors = errors or []
