"""Local blob storage behaviour."""
import pytest

from vidstream.errors import StorageError


async def test_append_creates_then_extends(storage):
    await storage.append("temp/v1/video.bin", b"AA")
    await storage.append("temp/v1/video.bin", b"BB")
    assert await storage.read("temp/v1/video.bin") == b"AABB"


async def test_write_overwrites(storage):
    await storage.write("videos/a.bin", b"old")
    await storage.write("videos/a.bin", b"new")
    assert await storage.read("videos/a.bin") == b"new"


async def test_read_missing_blob_raises_storage_error(storage):
    with pytest.raises(StorageError):
        await storage.read("temp/nothing/video.bin")


async def test_delete_prunes_empty_directories_but_keeps_root(storage):
    await storage.write("temp/v1/video.bin", b"x")
    await storage.delete("temp/v1/video.bin")

    assert not storage.exists("temp/v1/video.bin")
    assert not (storage.base_path / "temp").exists()
    assert storage.base_path.exists()


async def test_delete_keeps_non_empty_directories(storage):
    await storage.write("videos/v1/video.webm", b"x")
    await storage.write("videos/v1/poster.bin", b"y")
    await storage.delete("videos/v1/video.webm")

    assert storage.exists("videos/v1/poster.bin")


async def test_delete_missing_blob_is_noop(storage):
    await storage.delete("videos/missing.bin")


@pytest.mark.parametrize("path", ["../escape.bin", "/etc/passwd", "temp/../../x", ""])
def test_paths_outside_root_are_refused(storage, path):
    with pytest.raises(StorageError):
        storage.absolute(path)


def test_url_quotes_path_segments(storage):
    assert storage.url("videos/my clip/video.webm") == "http://testserver/storage/videos/my%20clip/video.webm"


def test_url_without_prefix(tmp_path):
    from vidstream.services.blob_storage import BlobStorageService

    storage = BlobStorageService(root=str(tmp_path), app_url="https://cdn.example.com/", public_prefix="")
    assert storage.url("videos/a.webm") == "https://cdn.example.com/videos/a.webm"


async def test_size_and_truncate(storage):
    assert storage.size("temp/v1/video.bin") == 0
    await storage.write("temp/v1/video.bin", b"AABB")
    assert storage.size("temp/v1/video.bin") == 4

    await storage.truncate("temp/v1/video.bin", 2)
    assert await storage.read("temp/v1/video.bin") == b"AA"


async def test_truncate_missing_blob_raises_storage_error(storage):
    with pytest.raises(StorageError):
        await storage.truncate("temp/none/video.bin", 0)
