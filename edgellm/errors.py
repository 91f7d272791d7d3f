from __future__ import annotations


class EdgeLLMError(RuntimeError):
    """Base class for failures that are reported to the user as a notification."""


class NetworkError(EdgeLLMError):
    """Raised when a transfer fails at the transport level."""


class StorageError(EdgeLLMError):
    """Raised when the local model directory cannot be written."""


class RegistryError(EdgeLLMError):
    """Raised when the remote file listing fails or is malformed."""


class UnknownModelError(EdgeLLMError):
    """Raised when a display name has no repository mapping."""

    def __init__(self, display_name: str) -> None:
        super().__init__(f"Unknown model: {display_name}")
        self.display_name = display_name


class ModelFileMissing(EdgeLLMError):
    """Raised when the model file to load does not exist locally."""

    def __init__(self, path: object) -> None:
        super().__init__(f"Model file not found: {path}")
        self.path = path


class ModelLoadError(EdgeLLMError):
    """Raised when the inference engine fails to initialize a session."""


class ModelNotLoadedError(EdgeLLMError):
    """Raised when a message is sent before any model was loaded."""

    def __init__(self) -> None:
        super().__init__("Please load the model first.")


class SessionBusy(EdgeLLMError):
    """Raised when a load or completion is requested while another is in flight."""


class InferenceError(EdgeLLMError):
    """Raised when the completion call itself fails (not on cancellation)."""


class EmptyMessageError(EdgeLLMError, ValueError):
    """Raised when the user submits a blank message."""

    def __init__(self) -> None:
        super().__init__("Please enter a message.")
