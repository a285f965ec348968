"""
Local-disk storage for uploaded images and documents.

Files land under UPLOAD_ROOT/<folder>/ and are referenced everywhere else by
their public path (``/uploads/<folder>/<filename>``), which is also the URL the
app serves them from.
"""
import logging
import os
import secrets
import time
from typing import Optional

from fastapi import HTTPException, UploadFile

import config

logger = logging.getLogger(__name__)

UPLOAD_ROOT = config.UPLOAD_DIR
PUBLIC_PREFIX = "/uploads"

FOLDERS = ("donations", "free-food", "avatars", "ngo-logos", "ngo-certificates")

IMAGE_TYPES = {
    "image/jpeg": {".jpg", ".jpeg"},
    "image/png": {".png"},
    "image/gif": {".gif"},
    "image/webp": {".webp"},
}
DOCUMENT_TYPES = {"application/pdf": {".pdf"}, **IMAGE_TYPES}


def ensure_upload_dirs() -> None:
    for folder in FOLDERS:
        os.makedirs(os.path.join(UPLOAD_ROOT, folder), exist_ok=True)


def _unique_filename(prefix: str, ext: str) -> str:
    stamp = int(time.time() * 1000)
    suffix = secrets.randbelow(10**9)
    return f"{prefix}{stamp}-{suffix}{ext}"


def save_upload(
    upload: UploadFile,
    folder: str,
    prefix: str = "",
    allowed_types: Optional[dict] = None,
) -> str:
    """
    Validate and write an uploaded file, returning its public path.

    Raises HTTP 400 for a disallowed type or an oversized file. Disk errors
    propagate so the caller's write is aborted.
    """
    if folder not in FOLDERS:
        raise ValueError(f"Unknown upload folder: {folder}")

    allowed = allowed_types or IMAGE_TYPES
    content_type = (upload.content_type or "").lower()
    ext = os.path.splitext(upload.filename or "")[1].lower()

    if content_type not in allowed or ext not in allowed[content_type]:
        raise HTTPException(
            status_code=400,
            detail=f"Unsupported file type for {upload.filename or 'upload'}",
        )

    data = upload.file.read(config.MAX_UPLOAD_BYTES + 1)
    if len(data) > config.MAX_UPLOAD_BYTES:
        limit_mb = config.MAX_UPLOAD_BYTES // (1024 * 1024)
        raise HTTPException(
            status_code=400,
            detail=f"File size too large. Maximum size is {limit_mb}MB",
        )

    directory = os.path.join(UPLOAD_ROOT, folder)
    os.makedirs(directory, exist_ok=True)
    filename = _unique_filename(prefix, ext)
    with open(os.path.join(directory, filename), "wb") as fh:
        fh.write(data)

    logger.info("Stored upload %s/%s (%d bytes)", folder, filename, len(data))
    return f"{PUBLIC_PREFIX}/{folder}/{filename}"


def path_for(public_path: str) -> Optional[str]:
    """Map a public upload path back to a file under UPLOAD_ROOT."""
    if not public_path or not public_path.startswith(PUBLIC_PREFIX + "/"):
        return None
    relative = public_path[len(PUBLIC_PREFIX) + 1:]
    root = os.path.abspath(UPLOAD_ROOT)
    full = os.path.abspath(os.path.join(root, relative))
    if os.path.commonpath([root, full]) != root:
        return None
    return full


def delete_upload(public_path: Optional[str]) -> bool:
    """Best-effort removal; failures are logged and reported as False."""
    if not public_path:
        return False
    full = path_for(public_path)
    if full is None:
        logger.warning("Refusing to delete non-upload path %r", public_path)
        return False
    try:
        os.remove(full)
    except OSError:
        logger.warning("Could not delete upload %s", full, exc_info=True)
        return False
    logger.info("Deleted upload %s", full)
    return True
