from __future__ import annotations

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from sqlalchemy.orm import Session

from app.auth import Principal, get_current_principal
from app.db import get_db
from app.dependencies import get_client_ip, get_outbox, success
from app.models import RequestStatus
from app.services.accountant_service import add_document, delete_document, finalize_request
from app.services.director_service import reject_as_director, validate_request
from app.services.notification_service import NotificationOutbox
from app.services.purchase_request_service import (
    create_purchase_request,
    delete_purchase_request,
    get_purchase_request_detail,
    list_purchase_requests,
    submit_purchase_request,
    update_purchase_request,
)
from app.services.quote_service import add_quote, approve_request, delete_quote, reject_request, select_quote
from app.services.schemas import CommentInput, DocumentInput, PurchaseRequestInput, QuoteInput, RejectionInput

router = APIRouter(tags=['purchase-requests'])


def _detail(db: Session, principal: Principal, request_id: int) -> dict:
    return success(get_purchase_request_detail(db, principal=principal, request_id=request_id))


def _commit_and_notify(db: Session, background_tasks: BackgroundTasks, outbox: NotificationOutbox) -> None:
    db.commit()
    background_tasks.add_task(outbox.flush)


@router.post('/purchase-requests', status_code=201)
def create(
    payload: PurchaseRequestInput,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal | None = Depends(get_current_principal),
):
    purchase_request = create_purchase_request(
        db,
        principal=principal,
        ip=get_client_ip(request),
        **payload.model_dump(),
    )
    db.commit()
    return _detail(db, principal, purchase_request.id)


@router.get('/purchase-requests')
def index(
    status: RequestStatus | None = None,
    limit: int = 100,
    db: Session = Depends(get_db),
    principal: Principal | None = Depends(get_current_principal),
):
    return success(list_purchase_requests(db, principal=principal, status=status, limit=min(max(limit, 1), 500)))


@router.get('/purchase-requests/{request_id}')
def show(
    request_id: int,
    db: Session = Depends(get_db),
    principal: Principal | None = Depends(get_current_principal),
):
    return _detail(db, principal, request_id)


@router.put('/purchase-requests/{request_id}')
def update(
    request_id: int,
    payload: PurchaseRequestInput,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal | None = Depends(get_current_principal),
):
    update_purchase_request(
        db,
        principal=principal,
        request_id=request_id,
        ip=get_client_ip(request),
        **payload.model_dump(),
    )
    db.commit()
    return _detail(db, principal, request_id)


@router.delete('/purchase-requests/{request_id}')
def destroy(
    request_id: int,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal | None = Depends(get_current_principal),
):
    delete_purchase_request(db, principal=principal, request_id=request_id, ip=get_client_ip(request))
    db.commit()
    return success({'id': request_id, 'deleted': True})


@router.post('/purchase-requests/{request_id}/submit')
def submit(
    request_id: int,
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    principal: Principal | None = Depends(get_current_principal),
    outbox: NotificationOutbox = Depends(get_outbox),
):
    submit_purchase_request(
        db, principal=principal, request_id=request_id, outbox=outbox, ip=get_client_ip(request)
    )
    _commit_and_notify(db, background_tasks, outbox)
    return _detail(db, principal, request_id)


@router.post('/purchase-requests/{request_id}/quotes', status_code=201)
def create_quote(
    request_id: int,
    payload: QuoteInput,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal | None = Depends(get_current_principal),
):
    quote = add_quote(
        db,
        principal=principal,
        request_id=request_id,
        ip=get_client_ip(request),
        **payload.model_dump(),
    )
    db.commit()
    return success(
        {
            'id': quote.id,
            'purchase_request_id': quote.purchase_request_id,
            'supplier_name': quote.supplier_name,
            'supplier_contact': quote.supplier_contact,
            'amount': quote.amount,
            'valid_until': quote.valid_until,
            'notes': quote.notes,
        }
    )


@router.post('/purchase-requests/{request_id}/quotes/{quote_id}/select')
def choose_quote(
    request_id: int,
    quote_id: int,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal | None = Depends(get_current_principal),
):
    select_quote(db, principal=principal, request_id=request_id, quote_id=quote_id, ip=get_client_ip(request))
    db.commit()
    return _detail(db, principal, request_id)


@router.delete('/quotes/{quote_id}')
def remove_quote(
    quote_id: int,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal | None = Depends(get_current_principal),
):
    delete_quote(db, principal=principal, quote_id=quote_id, ip=get_client_ip(request))
    db.commit()
    return success({'id': quote_id, 'deleted': True})


@router.post('/purchase-requests/{request_id}/approve')
def approve(
    request_id: int,
    request: Request,
    background_tasks: BackgroundTasks,
    payload: CommentInput | None = None,
    db: Session = Depends(get_db),
    principal: Principal | None = Depends(get_current_principal),
    outbox: NotificationOutbox = Depends(get_outbox),
):
    approve_request(
        db,
        principal=principal,
        request_id=request_id,
        comment=payload.comment if payload else None,
        outbox=outbox,
        ip=get_client_ip(request),
    )
    _commit_and_notify(db, background_tasks, outbox)
    return _detail(db, principal, request_id)


@router.post('/purchase-requests/{request_id}/reject')
def reject(
    request_id: int,
    payload: RejectionInput,
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    principal: Principal | None = Depends(get_current_principal),
    outbox: NotificationOutbox = Depends(get_outbox),
):
    reject_request(
        db,
        principal=principal,
        request_id=request_id,
        comment=payload.comment,
        outbox=outbox,
        ip=get_client_ip(request),
    )
    _commit_and_notify(db, background_tasks, outbox)
    return _detail(db, principal, request_id)


@router.post('/purchase-requests/{request_id}/validate')
def validate(
    request_id: int,
    request: Request,
    background_tasks: BackgroundTasks,
    payload: CommentInput | None = None,
    db: Session = Depends(get_db),
    principal: Principal | None = Depends(get_current_principal),
    outbox: NotificationOutbox = Depends(get_outbox),
):
    validate_request(
        db,
        principal=principal,
        request_id=request_id,
        comment=payload.comment if payload else None,
        outbox=outbox,
        ip=get_client_ip(request),
    )
    _commit_and_notify(db, background_tasks, outbox)
    return _detail(db, principal, request_id)


@router.post('/purchase-requests/{request_id}/director-reject')
def director_reject(
    request_id: int,
    payload: RejectionInput,
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    principal: Principal | None = Depends(get_current_principal),
    outbox: NotificationOutbox = Depends(get_outbox),
):
    reject_as_director(
        db,
        principal=principal,
        request_id=request_id,
        comment=payload.comment,
        outbox=outbox,
        ip=get_client_ip(request),
    )
    _commit_and_notify(db, background_tasks, outbox)
    return _detail(db, principal, request_id)


@router.post('/purchase-requests/{request_id}/documents', status_code=201)
def create_document(
    request_id: int,
    payload: DocumentInput,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal | None = Depends(get_current_principal),
):
    document = add_document(
        db,
        principal=principal,
        request_id=request_id,
        document_type=payload.type,
        name=payload.name,
        file_url=payload.file_url,
        ip=get_client_ip(request),
    )
    db.commit()
    return success(
        {
            'id': document.id,
            'purchase_request_id': document.purchase_request_id,
            'type': document.type.value,
            'name': document.name,
            'file_url': document.file_url,
        }
    )


@router.delete('/documents/{document_id}')
def remove_document(
    document_id: int,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal | None = Depends(get_current_principal),
):
    delete_document(db, principal=principal, document_id=document_id, ip=get_client_ip(request))
    db.commit()
    return success({'id': document_id, 'deleted': True})


@router.post('/purchase-requests/{request_id}/finalize')
def finalize(
    request_id: int,
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    principal: Principal | None = Depends(get_current_principal),
    outbox: NotificationOutbox = Depends(get_outbox),
):
    finalize_request(db, principal=principal, request_id=request_id, outbox=outbox, ip=get_client_ip(request))
    _commit_and_notify(db, background_tasks, outbox)
    return _detail(db, principal, request_id)
