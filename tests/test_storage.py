"""
Local blob storage behaviour.
"""

import os

import pytest

from utils.storage import BlobStoreError, LocalBlobStore


@pytest.fixture
def store(tmp_path):
    return LocalBlobStore(str(tmp_path), "/complaints/images/")


def test_upload_read_delete(store, tmp_path):
    url = store.upload(b"photo", "PNG")
    assert url.startswith("/complaints/images/") and url.endswith(".png")
    assert store.read(url) == b"photo"

    filename = store.filename_from_url(url)
    assert os.path.exists(tmp_path / filename)

    store.delete(url)
    assert not os.path.exists(tmp_path / filename)
    store.delete(url)


def test_prefix_and_unique_names(store):
    first = store.upload(b"a", "jpg", prefix="resolution-")
    second = store.upload(b"b", "jpg", prefix="resolution-")
    assert first != second
    assert store.filename_from_url(first).startswith("resolution-")


@pytest.mark.parametrize("name", ["../secret.png", "a/b.png", "", ".."])
def test_path_traversal_rejected(store, name):
    with pytest.raises(BlobStoreError):
        store.path_for(name)


def test_foreign_url_rejected(store):
    with pytest.raises(BlobStoreError):
        store.read("https://elsewhere.example/x.png")


def test_missing_blob(store):
    with pytest.raises(BlobStoreError):
        store.read("/complaints/images/missing.png")


def test_extension_required(store):
    with pytest.raises(BlobStoreError):
        store.upload(b"x", "")
