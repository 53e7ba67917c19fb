"""Photo storage on local disk.

Files land in ``<upload_dir>/<folder>/<uuid><ext>`` and are addressed by
``<upload_base_url>/<folder>/<uuid><ext>``. Only JPG/JPEG/PNG images up
to ``settings.max_photo_bytes`` are accepted.
"""

import asyncio
import logging
import os
import uuid

from order_delivery.config import settings
from order_delivery.middleware.exceptions import ValidationFailed

logger = logging.getLogger(__name__)

ALLOWED_PHOTO_EXTENSIONS = {".jpg", ".jpeg", ".png"}

# Photo kind -> storage folder
PHOTO_FOLDERS = {
    "personal_photo": "personal-photos",
    "national_id_front_photo": "national-id-front",
    "national_id_back_photo": "national-id-back",
    "chassis_photo": "vehicle-chassis",
    "inspection_photo": "vehicle-inspection",
}


class BlobStore:
    def __init__(self, root: str, base_url: str, max_bytes: int):
        self._root = root
        self._base_url = base_url.rstrip("/")
        self._max_bytes = max_bytes

    def validate(self, kind: str, filename: str | None, content: bytes) -> str:
        """Return the normalized extension or raise ValidationFailed."""
        if kind not in PHOTO_FOLDERS:
            raise ValueError(f"Unknown photo kind: {kind}")

        ext = os.path.splitext(filename or "")[1].lower()
        if ext not in ALLOWED_PHOTO_EXTENSIONS:
            raise ValidationFailed(
                f"{kind}: only JPG, JPEG and PNG images are accepted",
                details={"field": kind},
            )
        if not content:
            raise ValidationFailed(f"{kind}: file is empty", details={"field": kind})
        if len(content) > self._max_bytes:
            raise ValidationFailed(
                f"{kind}: file exceeds {self._max_bytes // (1024 * 1024)}MB",
                details={"field": kind},
            )
        return ext

    async def save(self, kind: str, filename: str | None, content: bytes) -> str:
        ext = self.validate(kind, filename, content)
        folder = PHOTO_FOLDERS[kind]
        name = f"{uuid.uuid4().hex}{ext}"

        await asyncio.to_thread(self._write, folder, name, content)
        url = f"{self._base_url}/{folder}/{name}"
        logger.info("Stored %s (%d bytes) at %s", kind, len(content), url)
        return url

    async def delete(self, url: str) -> bool:
        """Remove a previously stored file. Unknown URLs are ignored."""
        prefix = f"{self._base_url}/"
        if not url.startswith(prefix):
            return False
        relative = url[len(prefix):]
        folder, _, name = relative.partition("/")
        if folder not in PHOTO_FOLDERS.values() or not name or "/" in name:
            return False

        path = os.path.join(self._root, folder, name)
        try:
            await asyncio.to_thread(os.remove, path)
        except FileNotFoundError:
            return False
        return True

    def _write(self, folder: str, name: str, content: bytes) -> None:
        directory = os.path.join(self._root, folder)
        os.makedirs(directory, exist_ok=True)
        with open(os.path.join(directory, name), "wb") as f:
            f.write(content)


blob_store = BlobStore(settings.upload_dir, settings.upload_base_url, settings.max_photo_bytes)


def get_blob_store() -> BlobStore:
    return blob_store
