"""Image uploads for authenticated users."""

from __future__ import annotations

import logging
from typing import Sequence

from fastapi import UploadFile
from starlette.concurrency import run_in_threadpool

from app.adapters.storage.local import LocalFileStorage, StoredFile
from app.core.config import UploadSettings
from app.core.errors import AppError, ErrorKind
from app.core.file_validation import (
    check_content_type,
    parse_content_types,
    read_upload_file_limited,
)

logger = logging.getLogger(__name__)


class UploadService:
    def __init__(self, storage: LocalFileStorage, cfg: UploadSettings) -> None:
        self._storage = storage
        self._allowed = parse_content_types(cfg.allowed_types)
        self._max_bytes = cfg.max_file_size_mb * 1024 * 1024
        self._max_files = cfg.max_files

    async def _read(self, file: UploadFile) -> tuple[str, bytes]:
        content_type = check_content_type(file, self._allowed)
        return content_type, await read_upload_file_limited(file, max_bytes=self._max_bytes)

    async def store_one(self, user_id: int, file: UploadFile | None) -> StoredFile:
        if file is None:
            raise AppError(ErrorKind.BAD_REQUEST, "No file uploaded")
        content_type, content = await self._read(file)
        stored = await run_in_threadpool(
            self._storage.save,
            original_name=file.filename or "file",
            content_type=content_type,
            content=content,
        )
        logger.info(
            "upload.stored",
            extra={"user_id": user_id, "stored_name": stored.filename, "size": stored.size},
        )
        return stored

    async def store_many(self, user_id: int, files: Sequence[UploadFile] | None) -> list[StoredFile]:
        """Validate every file first; nothing is written if any file is rejected."""
        if not files:
            raise AppError(ErrorKind.BAD_REQUEST, "No files uploaded")
        if len(files) > self._max_files:
            raise AppError(ErrorKind.BAD_REQUEST, f"Too many files. Maximum: {self._max_files}")

        accepted: list[tuple[UploadFile, str, bytes]] = []
        for file in files:
            content_type, content = await self._read(file)
            accepted.append((file, content_type, content))

        stored: list[StoredFile] = []
        for file, content_type, content in accepted:
            stored.append(
                await run_in_threadpool(
                    self._storage.save,
                    original_name=file.filename or "file",
                    content_type=content_type,
                    content=content,
                )
            )
        logger.info("upload.stored_many", extra={"user_id": user_id, "count": len(stored)})
        return stored
