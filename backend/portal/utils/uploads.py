"""Upload validation and storage helpers."""

import io
import uuid
from pathlib import Path
from typing import Optional

from PIL import Image

from ..errors import InvalidArgument

ALLOWED_CONTENT_TYPES = {
    "image/jpeg": "image",
    "image/png": "image",
    "application/pdf": "pdf",
}


def validate_upload_filename(filename: Optional[str]) -> None:
    if not filename or len(filename) > 200:
        raise InvalidArgument("invalid filename")
    if "/" in filename or "\\" in filename or filename.startswith("."):
        raise InvalidArgument("invalid filename path")


def sniff_upload_kind(payload: bytes, content_type: Optional[str]) -> str:
    """Check the declared content type against the payload itself.

    PDFs must start with the `%PDF` magic; images must be readable by Pillow.
    """
    kind = ALLOWED_CONTENT_TYPES.get(content_type or "")
    if kind is None:
        raise InvalidArgument("Only JPEG, PNG and PDF files are allowed")
    if kind == "pdf":
        if payload[:4] != b"%PDF":
            raise InvalidArgument("unsupported file content; expected PDF")
        return kind
    try:
        Image.open(io.BytesIO(payload)).verify()
    except Exception:
        raise InvalidArgument("unsupported file content; expected image")
    return kind


def store_payload(upload_dir: Path, payload: bytes, filename: str) -> tuple:
    """Write `payload` under `upload_dir`; return `(file_id, path)`."""
    upload_dir.mkdir(parents=True, exist_ok=True)
    file_id = uuid.uuid4().hex
    suffix = Path(filename).suffix.lower()[:10]
    path = upload_dir / f"{file_id}{suffix}"
    path.write_bytes(payload)
    return file_id, path
