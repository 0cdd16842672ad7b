"""
Image retrieval from the blob store with an in-memory cache.

`BlobCache.get_blob` always resolves to an image: anything that goes wrong
while fetching or decoding yields the default asset instead.
"""

from __future__ import annotations

import io
import logging
from collections import Counter
from concurrent.futures import Future
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Optional, Protocol

from firebase_admin import storage as firebase_storage
from PIL import Image

from mydorm.dispatcher import Dispatcher
from shared.constants import IMAGE_EXTENSION, MAX_BLOB_BYTES
from shared.types import ImageBlob

logger = logging.getLogger(__name__)

DEFAULT_IMAGE_COLOR = (200, 200, 200)


class BlobNamespace(StrEnum):
    OBJECT_IMAGES = "objects"
    COMPANY_IMAGES = "companies"


class BlobFetchError(Exception):
    pass


class BlobNotFoundError(BlobFetchError):
    pass


class BlobTooLargeError(BlobFetchError):
    pass


class BlobStore(Protocol):
    """Minimal blob store operations used by the cache."""

    def fetch(self, path: str, max_size: int) -> bytes:
        ...


@dataclass
class InMemoryBlobStore:
    """Blob store double that counts fetches per path."""

    objects: dict[str, bytes] = field(default_factory=dict)
    fetch_counts: Counter = field(default_factory=Counter)

    def fetch(self, path: str, max_size: int) -> bytes:
        self.fetch_counts[path] += 1
        data = self.objects.get(path)
        if data is None:
            raise BlobNotFoundError(path)
        if len(data) > max_size:
            raise BlobTooLargeError(f"{path} is {len(data)} bytes")
        return data


class FirebaseBlobStore:
    """Firebase Storage bucket accessed through firebase_admin.storage."""

    def __init__(self, bucket_name: Optional[str] = None, app=None):
        self._bucket_name = bucket_name
        self._app = app

    def fetch(self, path: str, max_size: int) -> bytes:
        bucket = firebase_storage.bucket(self._bucket_name, app=self._app)
        blob = bucket.get_blob(path)
        if blob is None:
            raise BlobNotFoundError(path)
        if blob.size is not None and blob.size > max_size:
            raise BlobTooLargeError(f"{path} is {blob.size} bytes")
        # `end` is inclusive, so an object that grew past the limit still shows up.
        data = blob.download_as_bytes(end=max_size)
        if len(data) > max_size:
            raise BlobTooLargeError(f"{path} exceeds {max_size} bytes")
        return data


def decode_image(data: bytes) -> ImageBlob:
    with Image.open(io.BytesIO(data)) as img:
        img.verify()
        return ImageBlob(
            data=data, format=img.format or "JPEG", width=img.width, height=img.height
        )


def load_default_image(path: Optional[str] = None) -> ImageBlob:
    """Loads the fallback asset from `path`, or renders a plain grey JPEG."""
    if path:
        with open(path, "rb") as f:
            return decode_image(f.read())
    buffer = io.BytesIO()
    Image.new("RGB", (1, 1), DEFAULT_IMAGE_COLOR).save(buffer, format="JPEG")
    return decode_image(buffer.getvalue())


def normalize_blob_name(name: str) -> str:
    return name.lower().replace(" ", "")


class BlobCache:
    def __init__(
        self,
        store: BlobStore,
        dispatcher: Dispatcher,
        default_image: ImageBlob,
        max_size: int = MAX_BLOB_BYTES,
    ):
        self._store = store
        self._dispatcher = dispatcher
        self.default_image = default_image
        self.max_size = max_size
        self._cache: dict[BlobNamespace, dict[str, ImageBlob]] = {
            namespace: {} for namespace in BlobNamespace
        }

    def cached(self, name: str, namespace: BlobNamespace) -> Optional[ImageBlob]:
        return self._cache[namespace].get(normalize_blob_name(name))

    def get_blob(
        self, name: str, namespace: BlobNamespace = BlobNamespace.OBJECT_IMAGES
    ) -> Future:
        key = normalize_blob_name(name)
        hit = self._cache[namespace].get(key)
        if hit is not None:
            result: Future = Future()
            result.set_result(hit)
            return result

        path = f"{key}{IMAGE_EXTENSION}"

        def _fetch() -> Optional[ImageBlob]:
            try:
                return decode_image(self._store.fetch(path, self.max_size))
            except Exception as exc:
                logger.warning("Using default image for %s (%s): %s", path, namespace, exc)
                return None

        def _remember(image: Optional[ImageBlob]) -> ImageBlob:
            if image is None:
                return self.default_image
            self._cache[namespace][key] = image
            return image

        return self._dispatcher.run_io(_fetch, then=_remember)
