"""Attachment blob storage on the local filesystem, sealed under the escrow key."""

import os
import uuid
from pathlib import Path

from deadswitch.core.config import settings
from deadswitch.core.errors import NotFoundError
from deadswitch.core.logger import logger_config
from deadswitch.services.codec import PayloadCodec

logger = logger_config.get_logger("storage")


class LocalStorage:
    """
    Stores encrypted blobs under ``<root>/<message_id>/<uuid>.enc``.

    The returned location is opaque to callers; only this class reads it.
    """

    def __init__(self, codec: PayloadCodec, root: str | Path | None = None):
        self.codec = codec
        self.root = Path(root or settings.UPLOADS_DIR)

    def _resolve(self, location: str) -> Path:
        path = (self.root / location).resolve()
        if self.root.resolve() not in path.parents:
            raise NotFoundError("Attachment blob not found")
        return path

    def save(self, message_id: str, data: bytes) -> str:
        directory = self.root / message_id
        directory.mkdir(parents=True, exist_ok=True, mode=0o700)

        location = f"{message_id}/{uuid.uuid4()}.enc"
        fd = os.open(self.root / location, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
        with os.fdopen(fd, "wb") as handle:
            handle.write(self.codec.seal(data))
        return location

    def load(self, location: str) -> bytes:
        path = self._resolve(location)
        if not path.exists():
            raise NotFoundError("Attachment blob not found")
        return self.codec.open(path.read_bytes())

    def delete(self, location: str) -> None:
        """Missing blobs are not an error."""
        try:
            self._resolve(location).unlink(missing_ok=True)
        except OSError as exc:
            logger.error(
                "Failed to remove attachment blob",
                extra={"location": location, "error": str(exc)},
            )
