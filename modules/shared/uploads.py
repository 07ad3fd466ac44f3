import logging
from typing import Iterable, List, Optional

import cloudinary
import cloudinary.uploader
from fastapi import UploadFile
from starlette.concurrency import run_in_threadpool

from modules.shared.config import Settings, get_settings
from modules.shared.errors import InfrastructureError, ValidationError

logger = logging.getLogger("shared.uploads")

INCIDENT_FOLDER = "incidents"


def _ensure_cloudinary_configured(settings: Settings) -> None:
    """Configure Cloudinary from settings; raise if credentials are missing."""
    if not all([settings.CLOUDINARY_CLOUD_NAME, settings.CLOUDINARY_API_KEY, settings.CLOUDINARY_API_SECRET]):
        raise InfrastructureError(
            "Image uploads are not configured. Set CLOUDINARY_CLOUD_NAME, CLOUDINARY_API_KEY, CLOUDINARY_API_SECRET."
        )
    cloudinary.config(
        cloud_name=settings.CLOUDINARY_CLOUD_NAME,
        api_key=settings.CLOUDINARY_API_KEY,
        api_secret=settings.CLOUDINARY_API_SECRET,
        secure=True,
    )


class CloudinaryUploader:
    """Uploads incident images and returns their secure URLs."""

    def __init__(self, settings: Optional[Settings] = None, folder: str = INCIDENT_FOLDER):
        self.settings = settings or get_settings()
        self.folder = folder

    async def upload_image(self, file: UploadFile) -> str:
        if file.content_type and not file.content_type.startswith("image/"):
            raise ValidationError(f"Only image uploads are accepted, got {file.content_type}")
        _ensure_cloudinary_configured(self.settings)
        try:
            result = await run_in_threadpool(
                cloudinary.uploader.upload,
                file.file,
                resource_type="image",
                folder=self.folder,
                use_filename=True,
                unique_filename=True,
                overwrite=False,
            )
        except Exception as e:
            logger.error(f"Cloudinary upload of {file.filename} failed: {e}")
            raise InfrastructureError("Image upload failed") from e

        secure_url = result.get("secure_url") or result.get("url")
        if not secure_url:
            raise InfrastructureError("Image upload did not return a URL")
        logger.debug(f"Cloudinary upload successful: {secure_url}")
        return secure_url

    async def upload_images(self, files: Iterable[UploadFile]) -> List[str]:
        # Sequential so a failure stops before further uploads
        urls = []
        for file in files:
            if file is None or not file.filename:
                continue
            urls.append(await self.upload_image(file))
        return urls
