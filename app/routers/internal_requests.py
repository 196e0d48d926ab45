from __future__ import annotations

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from sqlalchemy.orm import Session

from app.auth import Principal, get_current_principal
from app.db import get_db
from app.dependencies import get_client_ip, get_outbox, success
from app.models import InternalCategory, InternalStatus
from app.services.internal_request_service import (
    add_internal_document,
    approve_internal_request,
    create_internal_request,
    delete_internal_document,
    finalize_internal_request,
    get_internal_request_detail,
    list_internal_requests,
    reject_internal_request,
)
from app.services.notification_service import NotificationOutbox
from app.services.schemas import (
    InternalCommentInput,
    InternalDocumentInput,
    InternalRejectionInput,
    InternalRequestInput,
)

router = APIRouter(tags=['internal-requests'])


def _detail(db: Session, principal: Principal, request_id: int) -> dict:
    return success(get_internal_request_detail(db, principal=principal, request_id=request_id))


@router.post('/internal-requests', status_code=201)
def create(
    request: Request,
    background_tasks: BackgroundTasks,
    payload: InternalRequestInput,
    db: Session = Depends(get_db),
    principal: Principal | None = Depends(get_current_principal),
    outbox: NotificationOutbox = Depends(get_outbox),
):
    internal_request = create_internal_request(
        db,
        principal=principal,
        title=payload.title,
        description=payload.description,
        category=payload.category,
        amount=payload.amount,
        outbox=outbox,
        ip=get_client_ip(request),
    )
    db.commit()
    background_tasks.add_task(outbox.flush)
    return _detail(db, principal, internal_request.id)


@router.get('/internal-requests')
def index(
    status: InternalStatus | None = None,
    category: InternalCategory | None = None,
    limit: int = 100,
    db: Session = Depends(get_db),
    principal: Principal | None = Depends(get_current_principal),
):
    return success(
        list_internal_requests(
            db,
            principal=principal,
            status=status,
            category=category,
            limit=min(max(limit, 1), 500),
        )
    )


@router.get('/internal-requests/{request_id}')
def show(
    request_id: int,
    db: Session = Depends(get_db),
    principal: Principal | None = Depends(get_current_principal),
):
    return _detail(db, principal, request_id)


@router.post('/internal-requests/{request_id}/approve')
def approve(
    request_id: int,
    request: Request,
    background_tasks: BackgroundTasks,
    payload: InternalCommentInput | None = None,
    db: Session = Depends(get_db),
    principal: Principal | None = Depends(get_current_principal),
    outbox: NotificationOutbox = Depends(get_outbox),
):
    approve_internal_request(
        db,
        principal=principal,
        request_id=request_id,
        comment=payload.comment if payload else None,
        outbox=outbox,
        ip=get_client_ip(request),
    )
    db.commit()
    background_tasks.add_task(outbox.flush)
    return _detail(db, principal, request_id)


@router.post('/internal-requests/{request_id}/reject')
def reject(
    request_id: int,
    request: Request,
    background_tasks: BackgroundTasks,
    payload: InternalRejectionInput,
    db: Session = Depends(get_db),
    principal: Principal | None = Depends(get_current_principal),
    outbox: NotificationOutbox = Depends(get_outbox),
):
    reject_internal_request(
        db,
        principal=principal,
        request_id=request_id,
        comment=payload.comment,
        outbox=outbox,
        ip=get_client_ip(request),
    )
    db.commit()
    background_tasks.add_task(outbox.flush)
    return _detail(db, principal, request_id)


@router.post('/internal-requests/{request_id}/finalize')
def finalize(
    request_id: int,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal | None = Depends(get_current_principal),
):
    finalize_internal_request(db, principal=principal, request_id=request_id, ip=get_client_ip(request))
    db.commit()
    return _detail(db, principal, request_id)


@router.post('/internal-requests/{request_id}/documents', status_code=201)
def create_document(
    request_id: int,
    request: Request,
    payload: InternalDocumentInput,
    db: Session = Depends(get_db),
    principal: Principal | None = Depends(get_current_principal),
):
    document = add_internal_document(
        db,
        principal=principal,
        request_id=request_id,
        name=payload.name,
        file_url=payload.file_url,
        ip=get_client_ip(request),
    )
    db.commit()
    return success(
        {
            'id': document.id,
            'internal_request_id': document.internal_request_id,
            'name': document.name,
            'file_url': document.file_url,
        }
    )


@router.delete('/internal-documents/{document_id}')
def remove_document(
    document_id: int,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal | None = Depends(get_current_principal),
):
    delete_internal_document(db, principal=principal, document_id=document_id, ip=get_client_ip(request))
    db.commit()
    return success({'id': document_id, 'deleted': True})
