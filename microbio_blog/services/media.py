"""Featured-image storage on Cloudinary.

Only the two calls the post lifecycle needs are wrapped: an upload of an
inline ``data:image/...;base64`` payload and a destroy. The SDK is blocking,
so both run in the threadpool.
"""
import base64
import binascii
import logging
from typing import Any, Callable, Dict, Optional, Protocol
from urllib.parse import urlparse

import cloudinary.exceptions
import cloudinary.uploader
from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool

from microbio_blog.core.config import Settings
from microbio_blog.core.errors import MediaStorageError
from microbio_blog.core.utils import BASE64_IMAGE_RE

logger = logging.getLogger(__name__)


class UploadResult(BaseModel):
    url: str
    public_id: str


class MediaStorage(Protocol):
    async def upload(self, data: str, folder: str) -> UploadResult: ...

    async def delete(self, public_id: str) -> bool: ...


def decoded_size(data_uri: str) -> int:
    """Byte size of the payload of a base64 data URI."""
    match = BASE64_IMAGE_RE.match(data_uri)
    if not match:
        raise MediaStorageError("Only JPEG, PNG, GIF and WebP images are accepted")
    try:
        return len(base64.b64decode(data_uri[match.end():], validate=True))
    except (binascii.Error, ValueError):
        raise MediaStorageError("Image payload is not valid base64")


def public_id_from_url(url: str) -> Optional[str]:
    """Recover ``folder/name`` from a Cloudinary delivery URL."""
    path = urlparse(url).path
    if "/upload/" not in path:
        return None
    tail = path.split("/upload/", 1)[1].split("/")
    # Drop the version segment (v1712345678)
    if tail and tail[0].startswith("v") and tail[0][1:].isdigit():
        tail = tail[1:]
    if not tail:
        return None
    tail[-1] = tail[-1].rsplit(".", 1)[0]
    return "/".join(tail)


class CloudinaryMediaStorage:
    def __init__(
        self,
        cloud_name: Optional[str],
        api_key: Optional[str],
        api_secret: Optional[str],
        root_folder: str = "",
        max_bytes: int = 5 * 1024 * 1024,
        timeout: float = 30.0,
    ):
        self.cloud_name = cloud_name
        self.api_key = api_key
        self.api_secret = api_secret
        self.root_folder = root_folder.strip("/")
        self.max_bytes = max_bytes
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "CloudinaryMediaStorage":
        return cls(
            settings.CLOUDINARY_CLOUD_NAME,
            settings.CLOUDINARY_API_KEY,
            settings.CLOUDINARY_API_SECRET,
            root_folder=settings.MEDIA_FOLDER,
            max_bytes=settings.MEDIA_MAX_BYTES,
            timeout=settings.MEDIA_TIMEOUT_SECONDS,
        )

    @property
    def configured(self) -> bool:
        return bool(self.cloud_name and self.api_key and self.api_secret)

    async def _call(self, action: str, func: Callable[..., Dict[str, Any]], *args, **options) -> Dict[str, Any]:
        if not self.configured:
            raise MediaStorageError("Media storage is not configured")

        # Credentials go with each call instead of the global cloudinary.config()
        options.update(
            cloud_name=self.cloud_name,
            api_key=self.api_key,
            api_secret=self.api_secret,
            timeout=self.timeout,
        )
        try:
            return await run_in_threadpool(func, *args, **options)
        except cloudinary.exceptions.Error as exc:
            logger.error("Cloudinary %s failed: %s", action, exc)
            raise MediaStorageError(f"Image {action} failed") from exc

    async def upload(self, data: str, folder: str) -> UploadResult:
        size = decoded_size(data)
        if size > self.max_bytes:
            raise MediaStorageError(f"Image is too large; maximum size is {self.max_bytes // (1024 * 1024)}MB")

        full_folder = "/".join(p for p in (self.root_folder, folder.strip("/")) if p)
        body = await self._call(
            "upload", cloudinary.uploader.upload, data, folder=full_folder, resource_type="image",
        )
        if not body or "secure_url" not in body or "public_id" not in body:
            raise MediaStorageError("Unexpected response from media storage")

        logger.info("Uploaded image %s (%d bytes)", body["public_id"], size)
        return UploadResult(url=body["secure_url"], public_id=body["public_id"])

    async def delete(self, public_id: str) -> bool:
        body = await self._call("destroy", cloudinary.uploader.destroy, public_id, resource_type="image")
        deleted = body.get("result") == "ok"
        if deleted:
            logger.info("Deleted image %s", public_id)
        else:
            logger.warning("Image %s was not deleted: %s", public_id, body.get("result"))
        return deleted
