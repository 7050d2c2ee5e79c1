"""Fetching of the three model artifacts.

    model   : architecture description (JSON)
    weights : raw float32 weight buffer (binary)
    metadata: weight metadata entries (JSON list)

Locations starting with http:// or https:// are downloaded with requests
(streamed, so progress can be reported); anything else is read from the
local filesystem. The three fetches run concurrently in worker threads.
If any of them fails, the others are told to stop and cancelled.
"""

import asyncio
import json
import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import requests

from .errors import ArtifactLoadError, ConfigurationError
from .weights import WeightMetadataEntry, parse_metadata


logger = logging.getLogger(__name__)

ARTIFACTS = ("model", "weights", "metadata")

# artifact -> how the fetched bytes are decoded
FILETYPES = {
    "model": "json",
    "weights": "binary",
    "metadata": "json",
}

CHUNK_SIZE = 1 << 16


class LoadAborted(Exception):
    """Raised inside a worker when a sibling fetch failed."""


@dataclass
class Artifacts:
    """Decoded artifacts, ready for the graph builder."""
    model: dict[str, Any]
    weights: bytes
    metadata: list[WeightMetadataEntry] = field(default_factory=list)


def validate_filepaths(filepaths: dict[str, str] | None) -> dict[str, str]:
    """All three artifact locations must be present."""
    filepaths = filepaths or {}
    missing = [name for name in ARTIFACTS if not filepaths.get(name)]
    if missing:
        raise ConfigurationError(
            "File paths must be declared for model, weights, and metadata",
            context={"missing": missing},
        )
    return {name: str(filepaths[name]) for name in ARTIFACTS}


def _is_url(location: str) -> bool:
    return location.startswith(("http://", "https://"))


class ArtifactLoader:
    """Loads model, weights, and metadata concurrently.

    Args:
        filepaths: Artifact name -> URL or local path.
        headers: Extra HTTP headers sent with every URL fetch.
        timeout: Per-request timeout in seconds (URLs only).
    """

    def __init__(self, filepaths: dict[str, str], headers: dict[str, str] | None = None,
                 timeout: float = 60.0) -> None:
        self.filepaths = validate_filepaths(filepaths)
        self.headers = dict(headers or {})
        self.timeout = timeout
        self.progress_by_artifact: dict[str, int] = {name: 0 for name in ARTIFACTS}
        self._abort = threading.Event()

    @property
    def progress(self) -> int:
        """Rounded mean of the per-artifact percentages."""
        values = list(self.progress_by_artifact.values())
        return round(sum(values) / len(values))

    async def load(self) -> Artifacts:
        """Fetch and decode all artifacts.

        Raises:
            ArtifactLoadError: Any fetch or decode failed. Outstanding
                fetches are aborted first.
        """
        self._abort.clear()
        tasks = {
            name: asyncio.create_task(self._fetch(name), name=f"fetch-{name}")
            for name in ARTIFACTS
        }
        try:
            await asyncio.gather(*tasks.values())
        except BaseException:
            self.interrupt(tasks.values())
            await asyncio.gather(*tasks.values(), return_exceptions=True)
            raise

        data = {name: task.result() for name, task in tasks.items()}
        return Artifacts(
            model=data["model"],
            weights=data["weights"],
            metadata=data["metadata"],
        )

    def interrupt(self, tasks=()) -> None:
        """Stop in-flight fetches: workers bail out at their next chunk."""
        self._abort.set()
        for task in tasks:
            if not task.done():
                task.cancel()

    async def _fetch(self, name: str) -> Any:
        location = self.filepaths[name]
        try:
            raw = await asyncio.to_thread(self._read, name, location)
            decoded = self._decode(name, raw)
        except (asyncio.CancelledError, LoadAborted):
            raise
        except Exception as e:
            raise ArtifactLoadError(name, e) from e
        logger.debug("loaded %s from %s (%d bytes)", name, location, len(raw))
        return decoded

    def _decode(self, name: str, raw: bytes) -> Any:
        if FILETYPES[name] == "binary":
            return raw
        decoded = json.loads(raw)
        if name == "metadata":
            return parse_metadata(decoded)
        return decoded

    def _read(self, name: str, location: str) -> bytes:
        if _is_url(location):
            return self._download(name, location)
        data = Path(location).read_bytes()
        self.progress_by_artifact[name] = 100
        return data

    def _download(self, name: str, url: str) -> bytes:
        chunks = []
        with requests.get(url, headers=self.headers, stream=True, timeout=self.timeout) as resp:
            resp.raise_for_status()
            total = int(resp.headers.get("Content-Length") or 0)
            loaded = 0
            for chunk in resp.iter_content(chunk_size=CHUNK_SIZE):
                if self._abort.is_set():
                    raise LoadAborted(name)
                chunks.append(chunk)
                loaded += len(chunk)
                if total:
                    self.progress_by_artifact[name] = round(100 * loaded / total)
        self.progress_by_artifact[name] = 100
        return b"".join(chunks)
