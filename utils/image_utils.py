"""Secure image handling utilities for complaint and resolution photos."""
import hashlib
import io
import os
from typing import Dict, Tuple

from PIL import Image, UnidentifiedImageError
from werkzeug.datastructures import FileStorage
from werkzeug.utils import secure_filename

ALLOWED_IMAGE_EXTENSIONS = {"jpg", "jpeg", "png", "webp"}
DEFAULT_MAX_IMAGE_BYTES = 4 * 1024 * 1024  # 4 MB

# Pillow format name -> extensions accepted for it
_PIL_FORMATS = {
    "JPEG": {"jpg", "jpeg"},
    "PNG": {"png"},
    "WEBP": {"webp"},
}


def _fail_if(condition: bool, message: str) -> None:
    if condition:
        raise ValueError(message)


def mime_type_for(extension: str) -> str:
    mapping = {
        "jpg": "image/jpeg",
        "jpeg": "image/jpeg",
        "png": "image/png",
        "webp": "image/webp",
    }
    return mapping.get((extension or "").lower().lstrip("."), "application/octet-stream")


def mime_type_for_path(path: str) -> str:
    _, ext = os.path.splitext(path or "")
    return mime_type_for(ext)


def compute_hash(content: bytes) -> str:
    return hashlib.sha256(content).hexdigest()


def _sniff_format(content: bytes) -> str | None:
    try:
        with Image.open(io.BytesIO(content)) as img:
            detected = img.format
            img.verify()
    except UnidentifiedImageError:
        return None
    except Exception:  # corrupt payloads surface as assorted decoder errors
        return None
    return detected


def validate_image_file(file: FileStorage | None, max_bytes: int = DEFAULT_MAX_IMAGE_BYTES) -> Tuple[bytes, str]:
    _fail_if(file is None or not getattr(file, "filename", None), "No image provided")
    filename = secure_filename(file.filename or "")
    _fail_if(not filename or "." not in filename, "Unsupported file name")
    ext = filename.rsplit(".", 1)[1].lower()
    _fail_if(ext not in ALLOWED_IMAGE_EXTENSIONS, "File type not allowed")

    file.stream.seek(0, os.SEEK_END)
    size = file.stream.tell()
    file.stream.seek(0)
    _fail_if(size == 0, "Empty file")
    _fail_if(size > max_bytes, f"Image exceeds the {max_bytes // (1024 * 1024)}MB limit")

    content = file.read()
    _fail_if(len(content) > max_bytes, f"Image exceeds the {max_bytes // (1024 * 1024)}MB limit")
    detected = _sniff_format(content)
    _fail_if(detected is None, "Invalid image data")
    _fail_if(ext not in _PIL_FORMATS.get(detected, set()), "Image content does not match its extension")

    file.stream.seek(0)
    return content, ext


def read_image_upload(file: FileStorage | None, max_bytes: int = DEFAULT_MAX_IMAGE_BYTES) -> Dict:
    """Validate an uploaded photo and return it as an in-memory payload."""
    image_bytes, ext = validate_image_file(file, max_bytes=max_bytes)
    return {
        "bytes": image_bytes,
        "extension": ext,
        "mime_type": mime_type_for(ext),
        "image_hash": compute_hash(image_bytes),
        "original_name": secure_filename(file.filename or ""),
    }
