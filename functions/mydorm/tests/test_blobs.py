import io
import os
import tempfile
import unittest
from unittest.mock import MagicMock, patch

from PIL import Image

from mydorm.blobs import (
    BlobCache,
    BlobNamespace,
    BlobTooLargeError,
    FirebaseBlobStore,
    InMemoryBlobStore,
    load_default_image,
    normalize_blob_name,
)
from mydorm.dispatcher import Dispatcher

TIMEOUT = 5


def _jpeg(size=(4, 3), color=(10, 120, 200)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format="JPEG")
    return buffer.getvalue()


class BlobCacheTests(unittest.TestCase):
    def setUp(self):
        self.dispatcher = Dispatcher(io_workers=2)
        self.addCleanup(self.dispatcher.shutdown)
        self.store = InMemoryBlobStore(objects={"myitem.jpg": _jpeg()})
        self.default = load_default_image()
        self.cache = BlobCache(self.store, self.dispatcher, self.default)

    def test_normalization(self):
        self.assertEqual(normalize_blob_name("My Item"), "myitem")
        self.assertEqual(normalize_blob_name("myitem"), "myitem")

    def test_fetch_decodes_and_caches(self):
        image = self.cache.get_blob("myitem").result(timeout=TIMEOUT)
        self.assertEqual(image.format, "JPEG")
        self.assertEqual((image.width, image.height), (4, 3))
        self.assertEqual(image.media_type, "image/jpeg")

        again = self.cache.get_blob("My Item")
        self.assertTrue(again.done())
        self.assertIs(again.result(), image)
        self.assertEqual(self.store.fetch_counts["myitem.jpg"], 1)

    def test_namespaces_do_not_share_entries(self):
        self.cache.get_blob("myitem", BlobNamespace.OBJECT_IMAGES).result(timeout=TIMEOUT)
        self.assertIsNone(self.cache.cached("myitem", BlobNamespace.COMPANY_IMAGES))

        self.cache.get_blob("myitem", BlobNamespace.COMPANY_IMAGES).result(
            timeout=TIMEOUT
        )
        self.assertEqual(self.store.fetch_counts["myitem.jpg"], 2)

    def test_missing_blob_yields_default_and_is_not_cached(self):
        image = self.cache.get_blob("Nothing Here").result(timeout=TIMEOUT)
        self.assertIs(image, self.default)
        self.assertIsNone(self.cache.cached("nothinghere", BlobNamespace.OBJECT_IMAGES))

        self.cache.get_blob("nothinghere").result(timeout=TIMEOUT)
        self.assertEqual(self.store.fetch_counts["nothinghere.jpg"], 2)

    def test_undecodable_blob_yields_default(self):
        self.store.objects["broken.jpg"] = b"definitely not an image"
        image = self.cache.get_blob("broken").result(timeout=TIMEOUT)
        self.assertIs(image, self.default)

    def test_oversized_blob_yields_default(self):
        cache = BlobCache(self.store, self.dispatcher, self.default, max_size=16)
        image = cache.get_blob("myitem").result(timeout=TIMEOUT)
        self.assertIs(image, self.default)

    def test_transport_error_yields_default(self):
        store = MagicMock()
        store.fetch.side_effect = ConnectionError("offline")
        cache = BlobCache(store, self.dispatcher, self.default)
        self.assertIs(cache.get_blob("myitem").result(timeout=TIMEOUT), self.default)

    def test_default_image_from_file(self):
        with tempfile.NamedTemporaryFile(suffix=".jpg", delete=False) as f:
            f.write(_jpeg(size=(8, 8)))
        self.addCleanup(os.remove, f.name)
        image = load_default_image(f.name)
        self.assertEqual((image.width, image.height), (8, 8))


class FirebaseBlobStoreTests(unittest.TestCase):
    @patch("mydorm.blobs.firebase_storage")
    def test_fetch_downloads_within_limit(self, mock_storage):
        blob = MagicMock(size=3)
        blob.download_as_bytes.return_value = b"abc"
        mock_storage.bucket.return_value.get_blob.return_value = blob

        data = FirebaseBlobStore("bucket").fetch("box.jpg", max_size=10)

        self.assertEqual(data, b"abc")
        mock_storage.bucket.assert_called_once_with("bucket", app=None)
        blob.download_as_bytes.assert_called_once_with(end=10)

    @patch("mydorm.blobs.firebase_storage")
    def test_fetch_rejects_oversized_before_download(self, mock_storage):
        blob = MagicMock(size=11)
        mock_storage.bucket.return_value.get_blob.return_value = blob

        with self.assertRaises(BlobTooLargeError):
            FirebaseBlobStore().fetch("box.jpg", max_size=10)
        blob.download_as_bytes.assert_not_called()

    @patch("mydorm.blobs.firebase_storage")
    def test_fetch_rejects_download_past_limit(self, mock_storage):
        blob = MagicMock(size=None)
        blob.download_as_bytes.return_value = b"x" * 11
        mock_storage.bucket.return_value.get_blob.return_value = blob

        with self.assertRaises(BlobTooLargeError):
            FirebaseBlobStore().fetch("box.jpg", max_size=10)


if __name__ == "__main__":
    unittest.main()
