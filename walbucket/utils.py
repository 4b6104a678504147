"""Input normalization and hashing helpers."""

import hashlib
import mimetypes
import os
import secrets
import time
from pathlib import Path
from typing import BinaryIO, Union

from common.constants import DEFAULT_CONTENT_TYPE
from walbucket.exceptions import ValidationError

FileInput = Union[bytes, bytearray, memoryview, str, os.PathLike, BinaryIO]

UNTITLED = 'untitled'


def file_to_bytes(file: FileInput) -> bytes:
    """
    Normalize an upload input to bytes.

    Args:
        file: Raw bytes, a filesystem path or a binary file-like object

    Returns:
        File contents

    Raises:
        ValidationError: If the input type is unsupported or the path is unreadable
    """
    if isinstance(file, bytes):
        return file
    if isinstance(file, (bytearray, memoryview)):
        return bytes(file)

    if isinstance(file, (str, os.PathLike)):
        path = Path(file)
        try:
            return path.read_bytes()
        except OSError as e:
            raise ValidationError(f"Cannot read file '{path}': {e}", cause=e) from e

    read = getattr(file, 'read', None)
    if callable(read):
        data = read()
        if isinstance(data, str):
            raise ValidationError('File object must be opened in binary mode')
        return bytes(data)

    raise ValidationError(f"Unsupported file input type: {type(file).__name__}")


def get_file_name(file: FileInput) -> str:
    """Derive a display name from a path or a named file object."""
    if isinstance(file, (str, os.PathLike)):
        name = os.fspath(file).replace('\\', '/').rsplit('/', 1)[-1]
        return name or UNTITLED

    name = getattr(file, 'name', None)
    if isinstance(name, str) and name:
        return os.path.basename(name) or UNTITLED

    return UNTITLED


def guess_content_type(name: str) -> str:
    content_type, _ = mimetypes.guess_type(name, strict=False)
    return content_type or DEFAULT_CONTENT_TYPE


def sha256_hex(value: Union[str, bytes]) -> str:
    if isinstance(value, str):
        value = value.encode('utf-8')
    return hashlib.sha256(value).hexdigest()


def generate_share_token(nbytes: int = 24) -> str:
    """Generate an opaque URL-safe token for shareable links."""
    return secrets.token_urlsafe(nbytes)


def strip_hex_prefix(value: str) -> str:
    return value[2:] if value.lower().startswith('0x') else value


def now_ms() -> int:
    return int(time.time() * 1000)
