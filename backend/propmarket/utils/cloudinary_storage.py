from __future__ import annotations

import logging
import os
import tempfile
from io import BytesIO
from typing import Literal

import cloudinary.uploader
from PIL import Image, UnidentifiedImageError

from propmarket.config import cloudinary_folder
from propmarket.utils.cloudinary_config import cloudinary_is_configured, configure_cloudinary

logger = logging.getLogger(__name__)

# Images stay "image" so the admin panel can render previews; PDFs are stored untouched as "raw".
ResourceType = Literal["image", "raw"]

ALLOWED_DOCUMENT_TYPES = {
    "application/pdf": ".pdf",
    "image/jpeg": ".jpg",
    "image/png": ".png",
}
_EXT_TO_CONTENT_TYPE = {
    ".pdf": "application/pdf",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
}


class DocumentRejected(ValueError):
    pass


def cloudinary_enabled() -> bool:
    return cloudinary_is_configured()


def resolve_content_type(filename: str, content_type: str) -> str:
    """
    Return the canonical mime type for an upload, or "" when it isn't an accepted document.

    Some mobile clients send 'application/octet-stream', so the extension is the fallback.
    """
    ct = (content_type or "").lower().strip()
    if ct == "image/jpg":
        ct = "image/jpeg"
    if ct in ALLOWED_DOCUMENT_TYPES:
        return ct
    ext = os.path.splitext(filename or "")[1].lower()
    return _EXT_TO_CONTENT_TYPE.get(ext, "")


def resource_type_for(content_type: str) -> ResourceType:
    return "raw" if (content_type or "").lower() == "application/pdf" else "image"


def _looks_like_pdf(raw: bytes) -> bool:
    return raw[:5] == b"%PDF-"


def _looks_like_image(raw: bytes) -> bool:
    if not raw or len(raw) < 16:
        return False
    sig = raw[:16]
    return sig.startswith(b"\xFF\xD8\xFF") or sig.startswith(b"\x89PNG\r\n\x1a\n")


def validate_document(raw: bytes, content_type: str) -> None:
    """
    Check that the bytes really are what the declared type says.
    Raises DocumentRejected otherwise.
    """
    if content_type == "application/pdf":
        if not _looks_like_pdf(raw):
            raise DocumentRejected("File is not a valid PDF")
        return

    if not _looks_like_image(raw):
        raise DocumentRejected("File is not a valid JPEG or PNG image")
    try:
        with Image.open(BytesIO(raw)) as img:
            img.verify()
    except (UnidentifiedImageError, OSError, SyntaxError) as e:
        raise DocumentRejected("Image file is corrupted or unreadable") from e


def upload_bytes(
    *,
    raw: bytes,
    resource_type: ResourceType,
    public_id: str,
    filename: str,
) -> tuple[str, str]:
    """
    Upload a document and return (secure_url, public_id).
    Raises RuntimeError when Cloudinary does not return both.
    """
    configure_cloudinary()
    ext = os.path.splitext(filename or "")[1].lower() or (".pdf" if resource_type == "raw" else ".jpg")
    tmp_path: str | None = None
    try:
        with tempfile.NamedTemporaryFile(delete=False, suffix=ext) as tmp:
            tmp.write(raw)
            tmp_path = tmp.name

        res = cloudinary.uploader.upload(
            tmp_path,
            resource_type=resource_type,
            folder=cloudinary_folder(),
            public_id=public_id,
            overwrite=False,
            type="upload",
            invalidate=False,
        )
        url = str(res.get("secure_url") or "").strip()
        pid = str(res.get("public_id") or "").strip()
        if not url or not pid:
            raise RuntimeError("Cloudinary upload returned no URL")
        return url, pid
    finally:
        if tmp_path:
            try:
                os.unlink(tmp_path)
            except OSError:
                logger.warning("Could not remove temp upload file %s", tmp_path)


def destroy(*, public_id: str, resource_type: ResourceType) -> None:
    pid = (public_id or "").strip()
    if not pid:
        return
    configure_cloudinary()
    cloudinary.uploader.destroy(pid, resource_type=resource_type, invalidate=False)
