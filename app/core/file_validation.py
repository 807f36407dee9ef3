"""File validation utilities for image uploads.

Every rejection is an ``AppError`` so it is answered by the exception
handlers like any other client fault.
"""

from __future__ import annotations

import logging

from fastapi import UploadFile

from app.core.errors import AppError, ErrorKind

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 64 * 1024


def parse_content_types(value: str) -> frozenset[str]:
    """Parse a comma-separated list of content types.

    Examples:
        >>> sorted(parse_content_types("image/png, IMAGE/JPEG"))
        ['image/jpeg', 'image/png']
    """
    return frozenset(part.strip().lower() for part in value.split(",") if part.strip())


def check_content_type(file: UploadFile, allowed: frozenset[str]) -> str:
    """Return the file's content type, rejecting anything not in ``allowed``.

    Raises:
        AppError: BAD_REQUEST for a type outside the allow list.
    """
    content_type = (file.content_type or "").split(";")[0].strip().lower()
    if content_type not in allowed:
        logger.warning(
            "file_validation.rejected_type",
            extra={"content_type": content_type or None, "file_name": file.filename},
        )
        raise AppError(
            ErrorKind.BAD_REQUEST,
            f"Invalid file type. Allowed types: {', '.join(sorted(allowed))}",
        )
    return content_type


def _too_large(max_bytes: int) -> AppError:
    return AppError(
        ErrorKind.BAD_REQUEST,
        f"File too large. Maximum size: {max_bytes // (1024 * 1024)}MB",
        status_code=413,
    )


async def read_upload_file_limited(file: UploadFile, *, max_bytes: int) -> bytes:
    """Read an uploaded file in chunks enforcing the size limit.

    The multipart size is checked first when the parser reported it; the
    chunked read enforces the limit regardless.

    Args:
        file: FastAPI upload file instance.
        max_bytes: Largest accepted size.

    Returns:
        File content as bytes.

    Raises:
        AppError: 413 when the file exceeds ``max_bytes``.
    """
    declared = getattr(file, "size", None)
    if declared is not None and declared > max_bytes:
        logger.warning(
            "file_validation.rejected_by_header",
            extra={"file_size": declared, "max_bytes": max_bytes},
        )
        raise _too_large(max_bytes)

    size = 0
    chunks: list[bytes] = []
    while True:
        chunk = await file.read(_CHUNK_SIZE)
        if not chunk:
            break

        size += len(chunk)
        if size > max_bytes:
            logger.warning(
                "file_validation.rejected_by_chunked_read",
                extra={"size": size, "max_bytes": max_bytes},
            )
            raise _too_large(max_bytes)
        chunks.append(chunk)
    return b"".join(chunks)
