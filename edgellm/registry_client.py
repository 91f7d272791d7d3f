from __future__ import annotations

import json
import logging
from typing import Any, Mapping
from urllib.error import HTTPError, URLError
from urllib.parse import quote
from urllib.request import Request, urlopen

from .errors import RegistryError, UnknownModelError

logger = logging.getLogger(__name__)

DEFAULT_REGISTRY_URL = "https://huggingface.co"
WEIGHT_FILE_SUFFIX = ".gguf"


class RegistryClient:
    """Resolve display names to registry repositories and list their weight files."""

    def __init__(
        self,
        repositories: Mapping[str, str],
        base_url: str = DEFAULT_REGISTRY_URL,
        timeout: float = 30,
    ) -> None:
        self._repositories = dict(repositories)
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout

    def model_names(self) -> list[str]:
        return list(self._repositories)

    def repo_id_for(self, display_name: str) -> str:
        try:
            return self._repositories[display_name]
        except KeyError:
            raise UnknownModelError(display_name) from None

    def download_url(self, display_name: str, filename: str) -> str:
        repo_id = self.repo_id_for(display_name)
        return f"{self._base_url}/{repo_id}/resolve/main/{quote(filename)}"

    def list_gguf_files(self, display_name: str) -> list[str]:
        repo_id = self.repo_id_for(display_name)
        url = f"{self._base_url}/api/models/{repo_id}"
        payload = self._request_json(url)

        siblings = payload.get("siblings") if isinstance(payload, dict) else None
        if not isinstance(siblings, list):
            raise RegistryError(f"Unexpected response from registry for {repo_id}.")

        files: list[str] = []
        for entry in siblings:
            name = entry.get("rfilename") if isinstance(entry, dict) else None
            if isinstance(name, str) and name.endswith(WEIGHT_FILE_SUFFIX):
                files.append(name)
        logger.info("Registry listed %d weight files for %s", len(files), repo_id)
        return files

    def _request_json(self, url: str) -> Any:
        request = Request(url, headers={"Accept": "application/json"}, method="GET")
        try:
            with urlopen(request, timeout=self._timeout) as response:
                body = response.read()
        except HTTPError as exc:
            raise RegistryError(f"Registry error: {exc.code} {exc.reason}") from exc
        except (URLError, OSError) as exc:
            reason = getattr(exc, "reason", exc)
            raise RegistryError(f"Registry connection failed: {reason}") from exc

        if not body:
            raise RegistryError("Empty response from registry.")
        try:
            return json.loads(body.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise RegistryError("Registry returned malformed JSON.") from exc
