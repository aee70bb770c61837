"""
Offloads inline base64 images from orders to Cloudinary.

Uploads are keyed by the raw payload so the same image submitted twice in a
process lifetime is sent once. The uploader never raises: when Cloudinary is
unconfigured, the value is not an inline image, or the upload fails, the
original value comes back with a ``skipped_reason``.
"""
import logging
import os
import re
import threading
from collections import OrderedDict
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

import cloudinary
import cloudinary.uploader

logger = logging.getLogger(__name__)

DATA_URI_IMAGE = re.compile(r"^data:image/[a-zA-Z0-9+.-]+;base64,")

NOT_CONFIGURED = "not_configured"
NOT_INLINE_IMAGE = "not_inline_image"
UPLOAD_FAILED = "upload_failed"


def is_data_uri_image(value) -> bool:
    return isinstance(value, str) and DATA_URI_IMAGE.match(value) is not None


@dataclass
class UploadResult:
    value: str
    skipped_reason: Optional[str] = None
    from_cache: bool = False

    @property
    def uploaded(self) -> bool:
        return self.skipped_reason is None


class MemoryUploadCache:
    """Unbounded payload -> URL map."""

    def __init__(self):
        self._data = {}

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, url: str) -> None:
        self._data[key] = url

    def __len__(self):
        return len(self._data)


class LRUUploadCache:
    """Payload -> URL map holding at most ``maxsize`` entries."""

    def __init__(self, maxsize: int = 1024):
        if maxsize <= 0:
            raise ValueError("maxsize must be positive")
        self.maxsize = maxsize
        self._data = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            url = self._data.get(key)
            if url is not None:
                self._data.move_to_end(key)
            return url

    def set(self, key: str, url: str) -> None:
        with self._lock:
            self._data[key] = url
            self._data.move_to_end(key)
            while len(self._data) > self.maxsize:
                self._data.popitem(last=False)

    def __len__(self):
        return len(self._data)


class ImageUploader:
    def __init__(self, cloud_name=None, api_key=None, api_secret=None, base_folder="orders", cache=None, uploader=None):
        self.base_folder = base_folder or "orders"
        self.cache = cache if cache is not None else MemoryUploadCache()
        self.configured = all([cloud_name, api_key, api_secret])
        self._uploader = uploader or cloudinary.uploader
        if self.configured and uploader is None:
            cloudinary.config(cloud_name=cloud_name, api_key=api_key, api_secret=api_secret)

    @classmethod
    def from_env(cls, cache=None):
        if cache is None:
            size = int(os.getenv("UPLOAD_CACHE_SIZE", "1024"))
            cache = LRUUploadCache(size) if size > 0 else MemoryUploadCache()
        return cls(
            cloud_name=os.getenv("CLOUDINARY_CLOUD_NAME"),
            api_key=os.getenv("CLOUDINARY_API_KEY"),
            api_secret=os.getenv("CLOUDINARY_API_SECRET"),
            base_folder=os.getenv("CLOUDINARY_ORDERS_FOLDER", "orders"),
            cache=cache,
        )

    def folder_for(self, suffix: Optional[str]) -> str:
        trimmed = re.sub(r"\s+", "", (suffix or "")).strip("/")
        return f"{self.base_folder}/{trimmed}" if trimmed else self.base_folder

    def upload(self, value, folder_suffix: Optional[str] = None) -> UploadResult:
        if not self.configured:
            return UploadResult(value, skipped_reason=NOT_CONFIGURED)
        if not is_data_uri_image(value):
            return UploadResult(value, skipped_reason=NOT_INLINE_IMAGE)

        cached = self.cache.get(value)
        if cached is not None:
            return UploadResult(cached, from_cache=True)

        folder = self.folder_for(folder_suffix)
        try:
            result = self._uploader.upload(value, folder=folder, resource_type="image")
        except Exception as e:
            logger.error("Cloudinary upload failed: %s", e)
            return UploadResult(value, skipped_reason=UPLOAD_FAILED)

        url = (result or {}).get("secure_url") or (result or {}).get("url")
        if not url:
            logger.error("Cloudinary upload to %s returned no URL", folder)
            return UploadResult(value, skipped_reason=UPLOAD_FAILED)
        self.cache.set(value, url)
        logger.info("Uploaded order image to %s", folder)
        return UploadResult(url)

    def upload_image(self, value, folder_suffix: Optional[str] = None) -> str:
        return self.upload(value, folder_suffix).value


@lru_cache()
def get_uploader() -> ImageUploader:
    """Process-wide uploader, so the upload cache outlives a single request."""
    return ImageUploader.from_env()
