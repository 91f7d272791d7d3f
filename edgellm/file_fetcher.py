from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Callable
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from .errors import NetworkError, StorageError

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float], None]

PARTIAL_SUFFIX = ".part"
WEIGHT_FILE_SUFFIX = ".gguf"


class FileFetcher:
    """
    Materialize remote model files in a single flat directory.

    Transfers stream into ``<name>.part`` and are renamed into place only
    once complete, so an existing ``<name>`` is always a finished download.
    A failed transfer removes its partial file.
    """

    def __init__(
        self,
        model_dir: Path,
        chunk_size: int = 1024 * 1024,
        timeout: float = 60,
    ) -> None:
        self._model_dir = Path(model_dir)
        self._chunk_size = chunk_size
        self._timeout = timeout

    @property
    def model_dir(self) -> Path:
        return self._model_dir

    def local_path(self, filename: str) -> Path:
        if not filename or filename in {".", ".."} or "/" in filename or "\\" in filename:
            raise StorageError(f"Invalid model filename: {filename!r}")
        return self._model_dir / filename

    def exists(self, filename: str) -> bool:
        try:
            return self.local_path(filename).is_file()
        except (StorageError, OSError) as exc:
            # UI の表示切替にしか使わないため失敗はログのみ
            logger.warning("Could not check local model file %s: %s", filename, exc)
            return False

    def downloaded_files(self) -> list[str]:
        try:
            entries = sorted(self._model_dir.iterdir())
        except FileNotFoundError:
            return []
        except OSError as exc:
            logger.warning("Error checking downloaded models in %s: %s", self._model_dir, exc)
            return []
        return [
            entry.name
            for entry in entries
            if entry.name.endswith(WEIGHT_FILE_SUFFIX) and entry.is_file()
        ]

    def fetch(self, filename: str, url: str, on_progress: ProgressCallback | None = None) -> Path:
        destination = self.local_path(filename)
        if destination.is_file():
            logger.info("Model file %s already present, skipping download", destination)
            return destination

        try:
            self._model_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageError(f"Cannot create model directory {self._model_dir}: {exc}") from exc

        partial = destination.with_name(destination.name + PARTIAL_SUFFIX)
        try:
            self._transfer(url, partial, on_progress)
            try:
                os.replace(partial, destination)
            except OSError as exc:
                raise StorageError(f"Cannot move download into {destination}: {exc}") from exc
        except BaseException:
            self._discard(partial)
            raise
        logger.info("Downloaded %s to %s", url, destination)
        return destination

    def _transfer(self, url: str, partial: Path, on_progress: ProgressCallback | None) -> None:
        request = Request(url, headers={"Accept": "application/octet-stream"}, method="GET")
        try:
            response = urlopen(request, timeout=self._timeout)
        except HTTPError as exc:
            raise NetworkError(f"Download failed: {exc.code} {exc.reason}") from exc
        except (URLError, OSError) as exc:
            reason = getattr(exc, "reason", exc)
            raise NetworkError(f"Download connection failed: {reason}") from exc

        with response:
            total = _content_length(response)
            completed = 0
            last_fraction = 0.0
            try:
                handle = partial.open("wb")
            except OSError as exc:
                raise StorageError(f"Cannot write {partial}: {exc}") from exc

            with handle:
                while True:
                    try:
                        chunk = response.read(self._chunk_size)
                    except OSError as exc:
                        raise NetworkError(f"Download interrupted: {exc}") from exc
                    if not chunk:
                        break
                    try:
                        handle.write(chunk)
                    except OSError as exc:
                        raise StorageError(f"Cannot write {partial}: {exc}") from exc
                    completed += len(chunk)
                    if on_progress is not None and total:
                        # 進捗は単調非減少かつ 1.0 未満に抑え、完了時にだけ 1.0 を通知する
                        fraction = min(completed / total, 1.0)
                        if fraction < 1.0 and fraction >= last_fraction:
                            last_fraction = fraction
                            on_progress(fraction)

        if total and completed < total:
            raise NetworkError(f"Download incomplete: received {completed} of {total} bytes")
        if on_progress is not None:
            on_progress(1.0)

    @staticmethod
    def _discard(partial: Path) -> None:
        try:
            partial.unlink(missing_ok=True)
        except OSError as exc:  # pragma: no cover - cleanup failure
            logger.warning("Failed to remove partial download %s: %s", partial, exc)


def _content_length(response) -> int | None:
    value = response.headers.get("Content-Length") if response.headers else None
    try:
        length = int(value) if value is not None else None
    except (TypeError, ValueError):
        return None
    return length if length and length > 0 else None
