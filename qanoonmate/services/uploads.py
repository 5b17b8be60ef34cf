"""
Validation and storage of uploaded files.

Every upload is validated for type and size before anything is written:
- profile photos: images only
- verification documents: images or PDF, kept outside the public /uploads mount
- consultation documents and chat attachments: images, PDF, doc, docx
"""
import logging
import os
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Any, Iterable, Optional

from fastapi import UploadFile

from ..config import settings
from ..exceptions import UploadRejectedError

logger = logging.getLogger(__name__)

IMAGE_TYPES = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/webp": ".webp",
}
PDF_TYPES = {"application/pdf": ".pdf"}
WORD_TYPES = {
    "application/msword": ".doc",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": ".docx",
}

PHOTO_TYPES = dict(IMAGE_TYPES)
VERIFICATION_TYPES = {**IMAGE_TYPES, **PDF_TYPES}
DOCUMENT_TYPES = {**IMAGE_TYPES, **PDF_TYPES, **WORD_TYPES}

_EXTENSION_TYPES = {ext: ctype for types in (IMAGE_TYPES, PDF_TYPES, WORD_TYPES) for ctype, ext in types.items()}
_EXTENSION_TYPES[".jpeg"] = "image/jpeg"


def resolve_content_type(filename: str, content_type: Optional[str]) -> Optional[str]:
    """Declared content type, falling back to the file extension when the client sent a generic one."""
    if content_type and content_type != "application/octet-stream":
        return content_type.split(";")[0].strip().lower()
    return _EXTENSION_TYPES.get(Path(filename or "").suffix.lower())


def validate_upload(
    filename: str,
    content_type: Optional[str],
    size: int,
    allowed_types: Iterable[str],
    max_bytes: Optional[int] = None,
) -> str:
    """
    Check an upload against allowed types and the size limit.

    Args:
        filename: original file name
        content_type: declared MIME type
        size: size in bytes
        allowed_types: accepted MIME types
        max_bytes: size limit (MAX_UPLOAD_MB by default)

    Returns:
        resolved MIME type

    Raises:
        UploadRejectedError: unsupported type or file too large
    """
    max_bytes = max_bytes or settings.max_upload_bytes
    name = filename or "file"
    resolved = resolve_content_type(name, content_type)

    if resolved not in set(allowed_types):
        raise UploadRejectedError(
            f'File "{name}" has an unsupported type.',
            {"filename": name, "content_type": content_type, "allowed": sorted(allowed_types)},
        )
    if size > max_bytes:
        raise UploadRejectedError(
            f'File "{name}" exceeds {max_bytes // (1024 * 1024)}MB limit.',
            {"filename": name, "size": size, "max_bytes": max_bytes},
        )
    if size == 0:
        raise UploadRejectedError(f'File "{name}" is empty.', {"filename": name})
    return resolved


async def store_upload(
    upload: UploadFile,
    category: str,
    allowed_types: Dict[str, str],
    private: bool = False,
) -> Dict[str, Any]:
    """
    Validate and persist an uploaded file under UPLOAD_DIR/<category>/.

    Private files go to PRIVATE_UPLOAD_DIR/<category>/ instead and get no
    url; the caller serves them through an authorized route.

    Returns:
        metadata dict: id, name, url, file_type, file_size, uploaded_at
    """
    content = await upload.read()
    file_type = validate_upload(upload.filename, upload.content_type, len(content), allowed_types.keys())

    file_id = str(uuid.uuid4())
    extension = allowed_types[file_type]
    target_dir = Path(settings.PRIVATE_UPLOAD_DIR if private else settings.UPLOAD_DIR) / category
    os.makedirs(target_dir, exist_ok=True)
    target = target_dir / f"{file_id}{extension}"
    target.write_bytes(content)

    logger.info(f"Stored upload {upload.filename!r} as {target} ({len(content)} bytes)")
    return {
        "id": file_id,
        "name": upload.filename,
        "url": None if private else f"/uploads/{category}/{file_id}{extension}",
        "file_type": file_type,
        "file_size": len(content),
        "uploaded_at": datetime.now(timezone.utc).isoformat(),
    }


def private_file_path(category: str, document: Dict[str, Any], allowed_types: Dict[str, str]) -> Path:
    """Location of a file stored with private=True, from its metadata."""
    extension = allowed_types.get(document.get("file_type"))
    path = Path(settings.PRIVATE_UPLOAD_DIR) / category / f"{document['id']}{extension}"
    if extension is None or not path.is_file():
        raise FileNotFoundError(path)
    return path
