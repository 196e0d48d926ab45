from __future__ import annotations

from sqlalchemy import delete
from sqlalchemy.orm import Session

from app.auth import Capability, Principal, roles_with
from app.models import ApprovalAction, Document, PurchaseRequest, RequestStatus
from app.services.audit_service import log_audit
from app.services.errors import PreconditionFailed
from app.services.notification_service import NotificationOutbox, email_for_user, emails_for_roles, user_name
from app.services.purchase_request_service import (
    count_documents,
    get_selected_quote,
    notification_context,
    record_approval,
)
from app.services.schemas import DocumentInput, parse_input
from app.services.workflow_service import ensure_status, get_or_404, require_capability, transition_status

FINALIZE_COMMENT = 'finalized'
DOCUMENTS_REQUIRED = 1


def add_document(
    db: Session,
    *,
    principal: Principal | None,
    request_id: int,
    document_type: str,
    name: str,
    file_url: str,
    ip: str | None = None,
) -> Document:
    principal = require_capability(principal, Capability.MANAGE_DOCUMENTS)
    payload = parse_input(DocumentInput, type=document_type, name=name, file_url=file_url)
    request = get_or_404(db, PurchaseRequest, request_id)
    ensure_status(request, RequestStatus.VALIDATED, action='attach a document to')
    transition_status(
        db,
        PurchaseRequest,
        request,
        from_status=RequestStatus.VALIDATED,
        to_status=RequestStatus.VALIDATED,
        action='add_document',
    )

    document = Document(
        purchase_request_id=request.id,
        type=payload.type,
        name=payload.name,
        file_url=payload.file_url,
        uploaded_by_id=principal.id,
    )
    db.add(document)
    db.flush()
    log_audit(
        db,
        actor=principal,
        action='CREATE',
        entity_type='Document',
        entity_id=document.id,
        ip=ip,
        metadata={'purchase_request_id': request.id, 'type': payload.type.value, 'name': payload.name},
    )
    return document


def delete_document(
    db: Session,
    *,
    principal: Principal | None,
    document_id: int,
    ip: str | None = None,
) -> None:
    principal = require_capability(principal, Capability.MANAGE_DOCUMENTS)
    document = get_or_404(db, Document, document_id)
    request = get_or_404(db, PurchaseRequest, document.purchase_request_id)
    ensure_status(request, RequestStatus.VALIDATED, action='remove a document from')
    transition_status(
        db,
        PurchaseRequest,
        request,
        from_status=RequestStatus.VALIDATED,
        to_status=RequestStatus.VALIDATED,
        action='delete_document',
    )

    db.execute(delete(Document).where(Document.id == document.id).execution_options(synchronize_session=False))
    db.expunge(document)
    log_audit(
        db,
        actor=principal,
        action='DELETE',
        entity_type='Document',
        entity_id=document_id,
        ip=ip,
        metadata={'purchase_request_id': request.id, 'name': document.name},
    )


def finalize_request(
    db: Session,
    *,
    principal: Principal | None,
    request_id: int,
    outbox: NotificationOutbox | None = None,
    ip: str | None = None,
) -> PurchaseRequest:
    principal = require_capability(principal, Capability.FINALIZE_PURCHASE_REQUEST)
    request = get_or_404(db, PurchaseRequest, request_id)
    ensure_status(request, RequestStatus.VALIDATED, action='finalize')

    documents_count = count_documents(db, request.id)
    selected = get_selected_quote(db, request)
    checklist = {
        'documents_count': documents_count,
        'documents_required': DOCUMENTS_REQUIRED,
        'has_selected_quote': selected is not None,
    }
    if documents_count < DOCUMENTS_REQUIRED:
        raise PreconditionFailed('At least one supporting document is required', context=checklist)
    if selected is None:
        raise PreconditionFailed('No quote selected', context=checklist)

    transition_status(
        db,
        PurchaseRequest,
        request,
        from_status=RequestStatus.VALIDATED,
        to_status=RequestStatus.COMPLETED,
        action='finalize',
    )
    record_approval(db, request, principal=principal, action=ApprovalAction.APPROVE, comment=FINALIZE_COMMENT)
    log_audit(
        db,
        actor=principal,
        action='UPDATE',
        entity_type='PurchaseRequest',
        entity_id=request.id,
        ip=ip,
        metadata={'transition': 'finalize', 'from': 'VALIDATED', 'to': 'COMPLETED', 'documents_count': documents_count},
    )

    if outbox is not None:
        recipients = email_for_user(db, request.user_id) + emails_for_roles(
            db,
            roles_with(Capability.REVIEW_AS_PURCHASING) + roles_with(Capability.REVIEW_AS_DIRECTOR),
        )
        outbox.queue(
            'purchase_finalized',
            recipients,
            notification_context(
                db,
                request,
                documents_count=documents_count,
                actor_name=principal.name or user_name(db, principal.id),
            ),
        )
    return request
