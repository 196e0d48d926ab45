from __future__ import annotations

import logging
import secrets
from pathlib import Path
from typing import Protocol

from app.config import settings
from app.services.errors import InfrastructureError, ValidationError

logger = logging.getLogger(__name__)

ALLOWED_UPLOADS = {
    'application/pdf': {'.pdf'},
    'image/jpeg': {'.jpg', '.jpeg'},
    'image/png': {'.png'},
}


class DocumentStore(Protocol):
    def store(self, content: bytes, mime_type: str, filename: str) -> str: ...


def validate_upload(filename: str, mime_type: str, size: int, *, max_bytes: int | None = None) -> str:
    """Check an upload before it is stored and return its normalized extension."""
    limit = max_bytes if max_bytes is not None else settings.max_upload_bytes
    if size <= 0:
        raise ValidationError('File is empty', fields={'file': 'empty'})
    if size > limit:
        raise ValidationError(
            f'File too large (max {limit // (1024 * 1024)} MB)',
            fields={'file': f'{size} bytes exceeds {limit}'},
        )
    extensions = ALLOWED_UPLOADS.get(mime_type)
    if extensions is None:
        raise ValidationError(
            'File type not allowed. Accepted: PDF, JPEG, PNG',
            fields={'file': mime_type or 'unknown'},
        )
    extension = Path(filename or '').suffix.lower()
    if extension not in extensions:
        raise ValidationError(
            f'File extension does not match {mime_type}',
            fields={'file': extension or 'missing extension'},
        )
    return extension


class LocalDocumentStore:
    def __init__(self, directory: str | Path | None = None, base_url: str | None = None) -> None:
        self.directory = Path(directory or settings.upload_dir)
        self.base_url = (base_url or settings.upload_base_url).rstrip('/')

    def store(self, content: bytes, mime_type: str, filename: str) -> str:
        extension = validate_upload(filename, mime_type, len(content))
        name = f'{secrets.token_hex(12)}{extension}'
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            (self.directory / name).write_bytes(content)
        except OSError as exc:
            logger.exception('Could not write upload %s', name)
            raise InfrastructureError('Could not store the uploaded file') from exc
        logger.info('Stored upload %s (%s, %d bytes)', name, mime_type, len(content))
        return f'{self.base_url}/{name}'


def get_document_store() -> DocumentStore:
    return LocalDocumentStore()
