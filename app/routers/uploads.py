from __future__ import annotations

from fastapi import APIRouter, Depends, File, UploadFile
from fastapi.concurrency import run_in_threadpool

from app.auth import Capability, Principal, get_current_principal
from app.config import settings
from app.dependencies import get_store, success
from app.services.document_store import DocumentStore, validate_upload
from app.services.workflow_service import require_capability

router = APIRouter(tags=['uploads'])


@router.post('/uploads', status_code=201)
async def upload(
    file: UploadFile = File(...),
    principal: Principal | None = Depends(get_current_principal),
    store: DocumentStore = Depends(get_store),
):
    require_capability(principal, Capability.UPLOAD_FILES)
    # Reads at most one byte past the limit.
    content = await file.read(settings.max_upload_bytes + 1)
    mime_type = file.content_type or ''
    validate_upload(file.filename or '', mime_type, len(content))
    url = await run_in_threadpool(store.store, content, mime_type, file.filename or '')
    return success({'url': url, 'name': file.filename, 'size': len(content), 'type': mime_type})
