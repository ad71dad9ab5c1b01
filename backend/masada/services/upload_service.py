"""
Local disk storage for uploaded files.

Files land in UPLOAD_DIR/<upload_type>/<field>-<epoch_ms>-<random><ext>
and are served back from /api/v1/uploads/<upload_type>/<filename>.
"""

import secrets
import time
from pathlib import Path
from typing import Any, Dict, List

import aiofiles
import aiofiles.os
from fastapi import UploadFile

from masada.core.config import settings
from masada.core.exceptions import NotFoundError, PayloadTooLargeError, ValidationError
from masada.core.logging_config import logger

UPLOAD_TYPES = ("test-assets", "recordings", "avatars", "general")
CHUNK_SIZE = 1024 * 1024


class UploadService:

    @property
    def base_dir(self) -> Path:
        return settings.UPLOAD_DIR

    def validate_upload_type(self, upload_type: str) -> str:
        if upload_type not in UPLOAD_TYPES:
            raise ValidationError("Invalid upload type")
        return upload_type

    def validate_files(self, files: List[UploadFile]) -> None:
        if not files:
            raise ValidationError("No files uploaded")
        if len(files) > settings.MAX_FILES_PER_UPLOAD:
            raise ValidationError("Too many files uploaded")
        for upload in files:
            mime_type = upload.content_type or "application/octet-stream"
            if mime_type not in settings.ALLOWED_FILE_TYPES:
                raise ValidationError(f"File type {mime_type} is not allowed")

    def generate_filename(self, field_name: str, original_name: str) -> str:
        ext = Path(original_name or "").suffix.lower()
        return f"{field_name}-{int(time.time() * 1000)}-{secrets.randbelow(10**9)}{ext}"

    def build_url(self, upload_type: str, file_name: str) -> str:
        return f"/api/{settings.API_VERSION}/uploads/{upload_type}/{file_name}"

    def resolve_path(self, upload_type: str, file_name: str) -> Path:
        """Path of a stored file; names that escape the upload folder are rejected"""
        self.validate_upload_type(upload_type)
        directory = (self.base_dir / upload_type).resolve()
        if not file_name or Path(file_name).name != file_name or file_name in (".", ".."):
            raise ValidationError("Invalid file path")
        path = (directory / file_name).resolve()
        if path.parent != directory:
            raise ValidationError("Invalid file path")
        return path

    async def save(self, upload_type: str, upload: UploadFile, field_name: str = "files") -> Dict[str, Any]:
        directory = self.base_dir / upload_type
        directory.mkdir(parents=True, exist_ok=True)

        file_name = self.generate_filename(field_name, upload.filename)
        path = directory / file_name
        size = 0

        async with aiofiles.open(path, "wb") as f:
            while True:
                chunk = await upload.read(CHUNK_SIZE)
                if not chunk:
                    break
                size += len(chunk)
                if size > settings.MAX_FILE_SIZE:
                    break
                await f.write(chunk)

        if size > settings.MAX_FILE_SIZE:
            await aiofiles.os.remove(path)
            raise PayloadTooLargeError("File size too large")

        logger.info(f"[Uploads] Stored {upload_type}/{file_name} ({size} bytes)")
        return {
            "file_name": file_name,
            "original_name": upload.filename,
            "mime_type": upload.content_type or "application/octet-stream",
            "size": size,
            "url": self.build_url(upload_type, file_name),
        }

    async def save_all(self, upload_type: str, files: List[UploadFile]) -> List[Dict[str, Any]]:
        """Store every file; a failure removes the ones already written"""
        stored: List[Dict[str, Any]] = []
        try:
            for upload in files:
                stored.append(await self.save(upload_type, upload))
        except Exception:
            for item in stored:
                await self.delete(upload_type, item["file_name"], missing_ok=True)
            raise
        return stored

    async def delete(self, upload_type: str, file_name: str, missing_ok: bool = False) -> bool:
        path = self.resolve_path(upload_type, file_name)
        if not await aiofiles.os.path.exists(path):
            if missing_ok:
                return False
            raise NotFoundError("File")
        await aiofiles.os.remove(path)
        logger.info(f"[Uploads] Deleted {upload_type}/{file_name}")
        return True


upload_service = UploadService()
