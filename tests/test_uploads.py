"""
Tests for the Cloudinary image offload and its caches.
"""
from unittest.mock import MagicMock

import pytest

from order_service import process_order_items
from uploads import (
    NOT_CONFIGURED,
    NOT_INLINE_IMAGE,
    UPLOAD_FAILED,
    ImageUploader,
    LRUUploadCache,
    MemoryUploadCache,
    is_data_uri_image,
)
from tests.conftest import CLOUDINARY_URL

PNG = "data:image/png;base64,iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNk"
JPEG = "data:image/jpeg;base64,/9j/4AAQSkZJRgABAQAAAQABAAD/2wBDAAgGBgcGBQgHBwcJCQgKDBQN"


def test_data_uri_detection():
    assert is_data_uri_image(PNG)
    assert is_data_uri_image("data:image/svg+xml;base64,PHN2Zz4=")
    assert not is_data_uri_image("https://cdn.example.com/suit.png")
    assert not is_data_uri_image("data:text/plain;base64,aGVsbG8=")
    assert not is_data_uri_image(None)


class TestImageUploader:

    def test_unconfigured_returns_input_unchanged(self, cloudinary_uploader):
        uploader = ImageUploader(uploader=cloudinary_uploader)
        for value in (PNG, JPEG, "https://cdn.example.com/a.png", ""):
            result = uploader.upload(value, "items")
            assert result.value == value
            assert result.skipped_reason == NOT_CONFIGURED
            assert uploader.upload_image(value, "items") == value
        cloudinary_uploader.upload.assert_not_called()

    def test_urls_are_not_uploaded(self, image_uploader, cloudinary_uploader):
        result = image_uploader.upload("https://cdn.example.com/a.png", "items")
        assert not result.uploaded
        assert result.skipped_reason == NOT_INLINE_IMAGE
        cloudinary_uploader.upload.assert_not_called()

    def test_same_payload_uploaded_once(self, image_uploader, cloudinary_uploader):
        first = image_uploader.upload(PNG, "items")
        second = image_uploader.upload(PNG, "items")

        assert first.uploaded and first.value == CLOUDINARY_URL
        assert second.value == CLOUDINARY_URL
        assert second.from_cache
        cloudinary_uploader.upload.assert_called_once_with(PNG, folder="orders/items", resource_type="image")

    def test_distinct_payloads_uploaded_separately(self, image_uploader, cloudinary_uploader):
        image_uploader.upload(PNG, "items")
        image_uploader.upload(JPEG, "references")
        assert cloudinary_uploader.upload.call_count == 2
        assert cloudinary_uploader.upload.call_args.kwargs["folder"] == "orders/references"

    def test_plain_url_used_when_no_secure_url(self, image_uploader, cloudinary_uploader):
        cloudinary_uploader.upload.return_value = {"url": "http://res.cloudinary.com/demo/x.png"}
        assert image_uploader.upload_image(PNG, "items") == "http://res.cloudinary.com/demo/x.png"

    def test_failure_returns_original_and_is_not_cached(self, image_uploader, cloudinary_uploader, caplog):
        cloudinary_uploader.upload.side_effect = RuntimeError("cloudinary down")

        result = image_uploader.upload(PNG, "items")

        assert result.value == PNG
        assert result.skipped_reason == UPLOAD_FAILED
        assert len(image_uploader.cache) == 0
        assert "cloudinary down" in caplog.text

    def test_folder_paths(self, cloudinary_uploader):
        uploader = ImageUploader("demo", "key", "secret", base_folder="mehryaan/orders", uploader=cloudinary_uploader)
        assert uploader.folder_for("items") == "mehryaan/orders/items"
        assert uploader.folder_for("/refer ences/") == "mehryaan/orders/references"
        assert uploader.folder_for("") == "mehryaan/orders"
        assert uploader.folder_for(None) == "mehryaan/orders"


class TestCaches:

    def test_memory_cache(self):
        cache = MemoryUploadCache()
        cache.set("a", "url-a")
        assert cache.get("a") == "url-a"
        assert cache.get("b") is None

    def test_lru_evicts_least_recently_used(self):
        cache = LRUUploadCache(maxsize=2)
        cache.set("a", "url-a")
        cache.set("b", "url-b")
        cache.get("a")
        cache.set("c", "url-c")

        assert cache.get("b") is None
        assert cache.get("a") == "url-a"
        assert cache.get("c") == "url-c"
        assert len(cache) == 2

    def test_lru_rejects_non_positive_size(self):
        with pytest.raises(ValueError):
            LRUUploadCache(0)

    def test_uploader_with_lru_cache_reuploads_after_eviction(self, cloudinary_uploader):
        uploader = ImageUploader("demo", "key", "secret", cache=LRUUploadCache(1), uploader=cloudinary_uploader)
        uploader.upload(PNG, "items")
        uploader.upload(JPEG, "items")
        uploader.upload(PNG, "items")
        assert cloudinary_uploader.upload.call_count == 3

    def test_from_env_unconfigured(self, monkeypatch):
        for name in ("CLOUDINARY_CLOUD_NAME", "CLOUDINARY_API_KEY", "CLOUDINARY_API_SECRET"):
            monkeypatch.delenv(name, raising=False)
        monkeypatch.setenv("UPLOAD_CACHE_SIZE", "16")

        uploader = ImageUploader.from_env()

        assert not uploader.configured
        assert isinstance(uploader.cache, LRUUploadCache)
        assert uploader.cache.maxsize == 16


class TestProcessOrderItems:

    def test_images_and_reference_images_replaced(self, image_uploader, cloudinary_uploader):
        items = [{
            "productId": "p1",
            "name": "Suit",
            "price": 5999,
            "quantity": 1,
            "image": PNG,
            "customization": {"fabric": "Silk", "referenceImage": JPEG},
        }]

        processed = process_order_items(items, image_uploader)

        assert processed[0]["image"] == CLOUDINARY_URL
        assert processed[0]["customization"] == {"fabric": "Silk", "referenceImage": CLOUDINARY_URL}
        folders = [c.kwargs["folder"] for c in cloudinary_uploader.upload.call_args_list]
        assert folders == ["orders/items", "orders/references"]

    def test_input_items_are_not_mutated(self, image_uploader):
        item = {"image": PNG, "customization": {"referenceImage": JPEG}}
        process_order_items([item], image_uploader)
        assert item == {"image": PNG, "customization": {"referenceImage": JPEG}}

    def test_non_dict_items_pass_through(self, image_uploader):
        assert process_order_items(["raw", None, 3], image_uploader) == ["raw", None, 3]

    def test_empty_and_non_list_returned_unchanged(self, image_uploader):
        assert process_order_items([], image_uploader) == []
        assert process_order_items(None, image_uploader) is None
        assert process_order_items("items", image_uploader) == "items"

    def test_non_string_image_left_alone(self, image_uploader, cloudinary_uploader):
        processed = process_order_items([{"image": None, "customization": "plain"}], image_uploader)
        assert processed == [{"image": None, "customization": "plain"}]
        cloudinary_uploader.upload.assert_not_called()
