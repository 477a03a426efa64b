from pathlib import Path
from typing import Optional
import logging
import uuid

from fastapi import UploadFile

from ..core.config import settings
from ..core.exceptions import ServiceError

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = {"jpg", "jpeg", "png", "gif", "webp"}


class InvalidUpload(ServiceError):
    code = "invalid_upload"
    default_message = "The uploaded file is not a supported image"


class LocalBlobStore:
    """Saves uploads under MEDIA_ROOT and returns their public URL."""

    def __init__(
        self,
        root: str = settings.MEDIA_ROOT,
        base_url: str = settings.MEDIA_URL,
        max_bytes: int = settings.MAX_IMAGE_BYTES,
    ):
        self.root = Path(root)
        self.base_url = base_url.rstrip("/")
        self.max_bytes = max_bytes

    def upload(self, file: UploadFile, folder: str = "doctor-profiles") -> str:
        extension = self._extension(file.filename)
        if extension not in IMAGE_EXTENSIONS:
            raise InvalidUpload()
        if file.content_type and not file.content_type.startswith("image/"):
            raise InvalidUpload()

        data = file.file.read(self.max_bytes + 1)
        if not data:
            raise InvalidUpload("The uploaded file is empty")
        if len(data) > self.max_bytes:
            raise InvalidUpload("The uploaded image is too large")

        name = f"{uuid.uuid4().hex}.{extension}"
        target = self.root / folder / name
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)

        logger.info(f"Stored upload {file.filename} as {target}")
        return f"{self.base_url}/{folder}/{name}"

    @staticmethod
    def _extension(filename: Optional[str]) -> str:
        if not filename or "." not in filename:
            return ""
        return filename.rsplit(".", 1)[1].lower()


def get_blob_store() -> LocalBlobStore:
    return LocalBlobStore()
