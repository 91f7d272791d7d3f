from .controller import ChatController
from .workers import CompletionWorker, DownloadWorker, ModelLoadWorker, RegistryWorker

__all__ = [
    "ChatController",
    "CompletionWorker",
    "DownloadWorker",
    "ModelLoadWorker",
    "RegistryWorker",
]
