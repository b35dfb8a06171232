"""Document store — source documents in, generated documents and uploads out.

References are plain strings:
  * ``http(s)://…``  — fetched with httpx, only from ``source_allowed_hosts``
  * ``completed/…``, ``audit/…``, ``attachments/…`` — relative keys under
    ``settings.storage_dir``
  * an absolute path — read only when it lies inside ``settings.source_dir``
"""


import asyncio
import logging
import re
import uuid
from pathlib import Path

import httpx

from signflow.core.config import Settings, settings
from signflow.core.exceptions import NotFoundError, StorageError

logger = logging.getLogger(__name__)

_REMOTE_PREFIXES = ("http://", "https://")


def _safe_name(name: str) -> str:
    value = re.sub(r"[^a-zA-Z0-9._-]+", "-", (name or "file").strip())
    return value.strip(".-") or "file"


def _inside(path: Path, root: Path) -> bool:
    return path == root or root in path.parents


class DocumentStore:
    def __init__(
        self,
        root: str | Path,
        *,
        public_base_url: str = "http://localhost:8000",
        fetch_timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
        source_root: str | Path | None = None,
        allowed_hosts: list[str] | tuple[str, ...] = (),
    ):
        self.root = Path(root).resolve()
        self.source_root = Path(source_root).resolve() if source_root else None
        self._allowed_hosts = frozenset(h.lower() for h in allowed_hosts)
        self._public_base_url = public_base_url.rstrip("/")
        self._fetch_timeout = fetch_timeout
        self._transport = transport

    @classmethod
    def from_settings(cls, cfg: Settings = settings) -> "DocumentStore":
        return cls(
            cfg.storage_dir,
            public_base_url=cfg.public_base_url,
            fetch_timeout=cfg.source_fetch_timeout,
            source_root=cfg.source_dir,
            allowed_hosts=cfg.source_allowed_hosts,
        )

    # ------------------------------------------------------------------
    # Keys
    # ------------------------------------------------------------------

    @staticmethod
    def new_ref(prefix: str, filename: str) -> str:
        return f"{prefix}/{uuid.uuid4().hex}-{_safe_name(filename)}"

    def path_for(self, ref: str) -> Path:
        """Absolute path of a stored key; rejects keys escaping the root."""
        path = (self.root / ref).resolve()
        if not _inside(path, self.root):
            raise StorageError(f"Invalid document reference '{ref}'")
        return path

    def public_url(self, ref: str) -> str:
        return f"{self._public_base_url}/documents/{ref}"

    def check_source_ref(self, ref: str) -> None:
        """Raise StorageError unless *ref* is a source this store may read."""
        if ref.startswith(_REMOTE_PREFIXES):
            self._check_host(httpx.URL(ref))
        else:
            self._local_path(ref)

    def _check_host(self, url: httpx.URL) -> None:
        if "*" in self._allowed_hosts or url.host.lower() in self._allowed_hosts:
            return
        raise StorageError(f"Remote source host '{url.host}' is not allowed")

    def _local_path(self, ref: str) -> Path:
        if not Path(ref).is_absolute():
            return self.path_for(ref)
        path = Path(ref).resolve()
        if self.source_root is None or not _inside(path, self.source_root):
            raise StorageError(f"Source document '{ref}' is outside the source directory")
        return path

    # ------------------------------------------------------------------
    # I/O
    # ------------------------------------------------------------------

    async def save(self, ref: str, data: bytes) -> str:
        path = self.path_for(ref)

        def _write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)

        try:
            await asyncio.to_thread(_write)
        except OSError as exc:
            raise StorageError(f"Could not store '{ref}': {exc}") from exc
        logger.info("Stored %s (%d bytes)", ref, len(data))
        return ref

    async def load(self, ref: str) -> bytes:
        if ref.startswith(_REMOTE_PREFIXES):
            return await self._fetch(ref)

        path = self._local_path(ref)
        if not path.is_file():
            raise NotFoundError("Document", ref)
        try:
            return await asyncio.to_thread(path.read_bytes)
        except OSError as exc:
            raise StorageError(f"Could not read '{ref}': {exc}") from exc

    async def delete(self, ref: str) -> None:
        """Remove a stored key; missing keys and remote refs are ignored."""
        if ref.startswith(_REMOTE_PREFIXES) or Path(ref).is_absolute():
            return
        path = self.path_for(ref)
        try:
            await asyncio.to_thread(path.unlink, True)
        except OSError as exc:
            logger.warning("Could not delete stored document %s: %s", ref, exc)

    async def _fetch(self, url: str) -> bytes:
        self._check_host(httpx.URL(url))
        logger.info("Fetching source document %s", url)

        async def _guard_redirect(request: httpx.Request) -> None:
            self._check_host(request.url)

        try:
            async with httpx.AsyncClient(
                timeout=self._fetch_timeout,
                follow_redirects=True,
                transport=self._transport,
                event_hooks={"request": [_guard_redirect]},
            ) as client:
                response = await client.get(url)
                response.raise_for_status()
        except httpx.HTTPError as exc:
            raise StorageError(f"Failed to fetch '{url}': {exc}") from exc
        return response.content
