import asyncio

import pytest

from citypulse.errors import UpstreamFailure
from citypulse.media import LocalMediaStore, upload_all, upload_one

from .conftest import FakeMediaStore


def test_local_store_round_trip(tmp_path):
    store = LocalMediaStore(str(tmp_path))
    stored = store.upload(b"photo", "issues", "Pothole.JPG")

    assert stored.url == f"/media/{stored.public_id}"
    assert stored.public_id.startswith("issues/")
    assert stored.public_id.endswith(".jpg")
    assert (tmp_path / stored.public_id).read_bytes() == b"photo"

    store.delete(stored.public_id)
    assert not (tmp_path / stored.public_id).exists()


def test_local_store_refuses_paths_outside_root(tmp_path):
    store = LocalMediaStore(str(tmp_path / "media"))
    with pytest.raises(ValueError):
        store.delete("../outside.txt")


def test_upload_all_keeps_order():
    store = FakeMediaStore()
    files = [(b"1", "a.jpg"), (b"2", "b.jpg"), (b"3", "c.jpg")]
    stored = asyncio.run(upload_all(store, files, "issues"))
    assert [s.public_id.split("-", 1)[1] for s in stored] == ["a.jpg", "b.jpg", "c.jpg"]


def test_upload_all_with_no_files():
    assert asyncio.run(upload_all(FakeMediaStore(), [], "issues")) == []


def test_upload_all_discards_successful_siblings_on_failure():
    store = FakeMediaStore()
    store.fail_names.add("b.jpg")
    files = [(b"1", "a.jpg"), (b"2", "b.jpg"), (b"3", "c.jpg")]

    with pytest.raises(UpstreamFailure):
        asyncio.run(upload_all(store, files, "issues"))
    assert store.files == {}
    assert sorted(p.split("-", 1)[1] for p in store.deleted) == ["a.jpg", "c.jpg"]


def test_upload_one_wraps_errors():
    store = FakeMediaStore()
    store.fail_names.add("me.png")
    with pytest.raises(UpstreamFailure):
        asyncio.run(upload_one(store, b"x", "users", "me.png"))
