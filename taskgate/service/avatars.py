from __future__ import annotations

import mimetypes
import time
from pathlib import Path

from taskgate.logging import get_logger
from taskgate.storage.models import Avatar

logger = get_logger(__name__)

AVATAR_FOLDER = "avatars"


class PathTraversalError(ValueError):
    """Raised when an avatar name would resolve outside the avatar folder."""


class AvatarStore:
    """Stores avatar images under ``<fs_root>/avatars`` and serves them by URL."""

    def __init__(self, fs_root: str, *, url_prefix: str = "/media") -> None:
        self.base = Path(fs_root) / AVATAR_FOLDER
        self.url_prefix = url_prefix.rstrip("/")

    def _resolve(self, name: str) -> Path:
        """Map a bare file name into the avatar folder, refusing anything else."""
        base = self.base.resolve()
        if not name or Path(name).is_absolute():
            raise PathTraversalError("invalid avatar name")
        candidate = (base / name).resolve()
        if candidate.parent != base:
            raise PathTraversalError("path traversal detected")
        return candidate

    def upload(self, user_id: str, data: bytes, content_type: str) -> Avatar:
        extension = mimetypes.guess_extension(content_type.split(";")[0].strip()) or ".img"
        public_id = f"avatar_{user_id}_{int(time.time() * 1000)}"
        self.base.mkdir(parents=True, exist_ok=True)
        target = self._resolve(f"{public_id}{extension}")
        target.write_bytes(data)
        logger.info("avatar_uploaded", user_id=user_id, public_id=public_id, size=len(data))
        return Avatar(
            public_id=f"{AVATAR_FOLDER}/{target.name}",
            url=f"{self.url_prefix}/{AVATAR_FOLDER}/{target.name}",
        )

    def delete(self, public_id: str) -> bool:
        folder, _, name = public_id.partition("/")
        if folder != AVATAR_FOLDER:
            raise PathTraversalError("avatar id outside avatar folder")
        try:
            self._resolve(name).unlink()
        except FileNotFoundError:
            return False
        return True
