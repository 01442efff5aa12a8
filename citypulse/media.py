"""
Media storage for avatars and issue attachments.

Files go to Cloudinary when it is configured, otherwise to a directory on
local disk that the app serves under ``/media``.
"""
import asyncio
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

import cloudinary
import cloudinary.uploader
from starlette.concurrency import run_in_threadpool

from citypulse.config import Settings, get_settings
from citypulse.errors import UpstreamFailure
from citypulse.logging import get_logger

logger = get_logger(__name__)

MEDIA_URL_PREFIX = "/media"


@dataclass(frozen=True)
class StoredMedia:
    url: str
    public_id: str


class MediaStore:
    """Interface shared by the storage backends."""

    def upload(self, data: bytes, folder: str, filename: Optional[str] = None) -> StoredMedia:
        raise NotImplementedError

    def delete(self, public_id: str) -> None:
        raise NotImplementedError


class CloudinaryMediaStore(MediaStore):
    def __init__(self, settings: Settings):
        if settings.cloudinary_url:
            # The SDK reads CLOUDINARY_URL from the environment itself
            cloudinary.config(secure=True)
        else:
            cloudinary.config(
                cloud_name=settings.cloudinary_cloud_name,
                api_key=settings.cloudinary_api_key,
                api_secret=settings.cloudinary_api_secret,
                secure=True,
            )

    def upload(self, data: bytes, folder: str, filename: Optional[str] = None) -> StoredMedia:
        result = cloudinary.uploader.upload(data, folder=folder, resource_type="auto")
        return StoredMedia(url=result["secure_url"], public_id=result["public_id"])

    def delete(self, public_id: str) -> None:
        cloudinary.uploader.destroy(public_id)


class LocalMediaStore(MediaStore):
    def __init__(self, root: str):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def upload(self, data: bytes, folder: str, filename: Optional[str] = None) -> StoredMedia:
        suffix = Path(filename).suffix.lower() if filename else ""
        public_id = f"{folder}/{uuid.uuid4().hex}{suffix}"
        path = self.root / public_id
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("wb") as f:
            f.write(data)
        return StoredMedia(url=f"{MEDIA_URL_PREFIX}/{public_id}", public_id=public_id)

    def delete(self, public_id: str) -> None:
        path = (self.root / public_id).resolve()
        if self.root.resolve() not in path.parents:
            raise ValueError(f"Refusing to delete outside media root: {public_id}")
        path.unlink(missing_ok=True)


_store: Optional[MediaStore] = None


def get_media_store() -> MediaStore:
    """FastAPI dependency returning the process-wide media store."""
    global _store
    if _store is None:
        settings = get_settings()
        if settings.cloudinary_enabled:
            _store = CloudinaryMediaStore(settings)
        else:
            _store = LocalMediaStore(settings.media_root)
    return _store


# ---------------------------
# Upload helpers
# ---------------------------
def discard(store: MediaStore, items: Sequence[StoredMedia]) -> None:
    """Delete already-uploaded files. Failures are logged and otherwise ignored."""
    for item in items:
        try:
            store.delete(item.public_id)
        except Exception:
            logger.exception("media_cleanup_failed", public_id=item.public_id)


async def upload_one(
    store: MediaStore, data: bytes, folder: str, filename: Optional[str] = None
) -> StoredMedia:
    try:
        return await run_in_threadpool(store.upload, data, folder, filename)
    except Exception as exc:
        logger.exception("media_upload_failed", folder=folder, filename=filename)
        raise UpstreamFailure() from exc


async def upload_all(
    store: MediaStore, files: Sequence[Tuple[bytes, Optional[str]]], folder: str
) -> List[StoredMedia]:
    """Upload every file concurrently; all succeed or none are kept.

    When any upload fails, the ones that did succeed are deleted again and
    UpstreamFailure is raised.
    """
    if not files:
        return []

    results = await asyncio.gather(
        *(run_in_threadpool(store.upload, data, folder, name) for data, name in files),
        return_exceptions=True,
    )
    stored = [r for r in results if isinstance(r, StoredMedia)]
    failures = [r for r in results if isinstance(r, BaseException)]
    if failures:
        logger.error(
            "media_upload_failed",
            folder=folder,
            failed=len(failures),
            succeeded=len(stored),
            error=repr(failures[0]),
        )
        await run_in_threadpool(discard, store, stored)
        raise UpstreamFailure() from failures[0]
    return stored
