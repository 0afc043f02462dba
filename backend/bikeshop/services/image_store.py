# Overview: Local-disk image storage for bike photos.

"""
Image store

Images are written under IMAGE_UPLOAD_DIR with a random name and exposed at
IMAGE_PUBLIC_BASE_URL/<name>. Records only ever hold that public URL.

- upload() validates type and size, then returns the public URL
- delete() takes a public URL; foreign URLs and missing files return False
"""

from __future__ import annotations

import os
import uuid
from pathlib import Path

from flask import current_app
from werkzeug.utils import secure_filename

from ..errors import StoreUnavailableError, ValidationError


# content type -> stored file extension
ALLOWED_CONTENT_TYPES = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/webp": ".webp",
}


def _matches_content_type(data: bytes, content_type: str) -> bool:
    if content_type == "image/jpeg":
        return data[:3] == b"\xff\xd8\xff"
    if content_type == "image/png":
        return data[:8] == b"\x89PNG\r\n\x1a\n"
    if content_type == "image/webp":
        return data[:4] == b"RIFF" and data[8:12] == b"WEBP"
    return False


def upload_dir() -> Path:
    path = Path(current_app.config["IMAGE_UPLOAD_DIR"])
    if not path.is_absolute():
        path = Path(current_app.root_path).parent / path
    return path


def _base_url() -> str:
    return current_app.config.get("IMAGE_PUBLIC_BASE_URL", "/images").rstrip("/")


def public_url_for(name: str) -> str:
    return f"{_base_url()}/{name}"


def name_from_url(public_url: str | None) -> str | None:
    """Stored file name for one of our URLs, None for anything else."""
    if not public_url:
        return None
    prefix = _base_url() + "/"
    if not public_url.startswith(prefix):
        return None
    name = public_url[len(prefix):]
    if not name or secure_filename(name) != name:
        return None
    return name


def upload(data: bytes, content_type: str) -> str:
    """
    Store image bytes and return the public URL.

    Raises ValidationError for unsupported types, empty or oversized files.
    """
    content_type = (content_type or "").split(";", 1)[0].strip().lower()
    ext = ALLOWED_CONTENT_TYPES.get(content_type)
    if ext is None:
        raise ValidationError("Only JPEG, PNG or WebP images are accepted")
    if not data:
        raise ValidationError("Image is empty")

    max_bytes = current_app.config.get("IMAGE_MAX_BYTES", 10 * 1024 * 1024)
    if len(data) > max_bytes:
        raise ValidationError(f"Image exceeds {max_bytes // (1024 * 1024)} MB")
    if not _matches_content_type(data, content_type):
        raise ValidationError(f"File content is not {content_type}")

    name = f"{uuid.uuid4().hex}{ext}"
    target_dir = upload_dir()
    try:
        target_dir.mkdir(parents=True, exist_ok=True)
        with open(target_dir / name, "wb") as f:
            f.write(data)
    except OSError as exc:
        raise StoreUnavailableError(f"Could not store image: {exc}") from exc

    current_app.logger.info("Stored image %s (%d bytes)", name, len(data))
    return public_url_for(name)


def delete(public_url: str | None) -> bool:
    """
    Remove the file behind a public URL.

    Returns False for URLs this store did not issue and for files already gone.
    """
    name = name_from_url(public_url)
    if name is None:
        return False

    path = upload_dir() / name
    try:
        os.remove(path)
    except FileNotFoundError:
        return False
    except OSError as exc:
        raise StoreUnavailableError(f"Could not delete image {name}: {exc}") from exc
    return True


def delete_quietly(public_url: str | None) -> bool:
    """delete() for post-commit cleanup: failures are logged, never raised."""
    try:
        return delete(public_url)
    except StoreUnavailableError:
        current_app.logger.warning("Orphaned image left on disk: %s", public_url, exc_info=True)
        return False
