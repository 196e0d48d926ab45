"""Internal requests: recurring operating expenses with a two-step approval.

Purchasing creates the request, the director approves or rejects it, and purchasing
finalizes it once paid. Unlike purchase requests, finalizing needs no document.
"""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from app.auth import Capability, Principal, has_capability, roles_with
from app.models import (
    ApprovalAction,
    InternalApproval,
    InternalCategory,
    InternalDocument,
    InternalRequest,
    InternalStatus,
    User,
)
from app.services.audit_service import log_audit
from app.services.notification_service import (
    NotificationOutbox,
    email_for_user,
    emails_for_roles,
    request_url,
    user_name,
)
from app.services.reference_service import next_internal_reference
from app.services.schemas import (
    InternalCommentInput,
    InternalDocumentInput,
    InternalRejectionInput,
    InternalRequestInput,
    parse_input,
)
from app.services.workflow_service import (
    _now,
    ensure_status,
    get_or_404,
    require_capability,
    status_name,
    transition_status,
)

logger = logging.getLogger(__name__)


def _context(db: Session, request: InternalRequest, **extra) -> dict:
    context = {
        'reference': request.reference,
        'title': request.title,
        'description': request.description,
        'category': status_name(request.category),
        'amount': request.amount,
        'requester_name': user_name(db, request.requested_by_id),
        'url': request_url(f'/internal-requests/{request.id}'),
    }
    context.update(extra)
    return context


def _record_approval(
    db: Session,
    request: InternalRequest,
    *,
    principal: Principal,
    action: ApprovalAction,
    comment: str | None,
) -> InternalApproval:
    approval = InternalApproval(
        internal_request_id=request.id,
        action=action,
        comment=comment or None,
        user_id=principal.id,
    )
    db.add(approval)
    db.flush()
    return approval


def create_internal_request(
    db: Session,
    *,
    principal: Principal | None,
    title: str,
    category: InternalCategory | str,
    amount: Decimal | str | float,
    description: str | None = None,
    outbox: NotificationOutbox | None = None,
    ip: str | None = None,
    now: datetime | None = None,
) -> InternalRequest:
    principal = require_capability(principal, Capability.CREATE_INTERNAL_REQUEST)
    payload = parse_input(
        InternalRequestInput,
        title=title,
        description=description,
        category=category,
        amount=amount,
    )

    request = InternalRequest(
        reference=next_internal_reference(db, now=now or _now()),
        title=payload.title,
        description=payload.description or None,
        category=payload.category,
        amount=payload.amount,
        status=InternalStatus.PENDING,
        requested_by_id=principal.id,
    )
    db.add(request)
    db.flush()

    log_audit(
        db,
        actor=principal,
        action='CREATE',
        entity_type='InternalRequest',
        entity_id=request.id,
        ip=ip,
        metadata={
            'reference': request.reference,
            'category': payload.category.value,
            'amount': str(payload.amount),
        },
    )
    logger.info('Internal request %s created by user %s', request.reference, principal.id)

    if outbox is not None:
        outbox.queue(
            'internal_created',
            emails_for_roles(db, roles_with(Capability.REVIEW_INTERNAL_REQUEST)),
            _context(db, request),
        )
    return request


def approve_internal_request(
    db: Session,
    *,
    principal: Principal | None,
    request_id: int,
    comment: str | None = None,
    outbox: NotificationOutbox | None = None,
    ip: str | None = None,
) -> InternalRequest:
    principal = require_capability(principal, Capability.REVIEW_INTERNAL_REQUEST)
    payload = parse_input(InternalCommentInput, comment=comment)
    request = get_or_404(db, InternalRequest, request_id)
    ensure_status(request, InternalStatus.PENDING, action='approve')

    transition_status(
        db,
        InternalRequest,
        request,
        from_status=InternalStatus.PENDING,
        to_status=InternalStatus.APPROVED,
        action='approve',
    )
    _record_approval(db, request, principal=principal, action=ApprovalAction.APPROVE, comment=payload.comment)
    log_audit(
        db,
        actor=principal,
        action='UPDATE',
        entity_type='InternalRequest',
        entity_id=request.id,
        ip=ip,
        metadata={'transition': 'approve', 'from': 'PENDING', 'to': 'APPROVED'},
    )

    if outbox is not None:
        outbox.queue(
            'internal_approved',
            email_for_user(db, request.requested_by_id),
            _context(db, request, actor_name=principal.name or user_name(db, principal.id), comment=payload.comment),
        )
    return request


def reject_internal_request(
    db: Session,
    *,
    principal: Principal | None,
    request_id: int,
    comment: str,
    outbox: NotificationOutbox | None = None,
    ip: str | None = None,
) -> InternalRequest:
    principal = require_capability(principal, Capability.REVIEW_INTERNAL_REQUEST)
    payload = parse_input(InternalRejectionInput, comment=comment)
    request = get_or_404(db, InternalRequest, request_id)
    ensure_status(request, InternalStatus.PENDING, action='reject')

    transition_status(
        db,
        InternalRequest,
        request,
        from_status=InternalStatus.PENDING,
        to_status=InternalStatus.REJECTED,
        action='reject',
    )
    _record_approval(db, request, principal=principal, action=ApprovalAction.REJECT, comment=payload.comment)
    log_audit(
        db,
        actor=principal,
        action='UPDATE',
        entity_type='InternalRequest',
        entity_id=request.id,
        ip=ip,
        metadata={'transition': 'reject', 'from': 'PENDING', 'to': 'REJECTED', 'comment': payload.comment},
    )

    if outbox is not None:
        outbox.queue(
            'internal_rejected',
            email_for_user(db, request.requested_by_id),
            _context(db, request, actor_name=principal.name or user_name(db, principal.id), comment=payload.comment),
        )
    return request


def finalize_internal_request(
    db: Session,
    *,
    principal: Principal | None,
    request_id: int,
    ip: str | None = None,
) -> InternalRequest:
    principal = require_capability(principal, Capability.FINALIZE_INTERNAL_REQUEST)
    request = get_or_404(db, InternalRequest, request_id)
    ensure_status(request, InternalStatus.APPROVED, action='finalize')

    transition_status(
        db,
        InternalRequest,
        request,
        from_status=InternalStatus.APPROVED,
        to_status=InternalStatus.COMPLETED,
        action='finalize',
    )
    documents_count = db.execute(
        select(func.count(InternalDocument.id)).where(InternalDocument.internal_request_id == request.id)
    ).scalar_one()
    log_audit(
        db,
        actor=principal,
        action='UPDATE',
        entity_type='InternalRequest',
        entity_id=request.id,
        ip=ip,
        metadata={'transition': 'finalize', 'from': 'APPROVED', 'to': 'COMPLETED', 'documents_count': documents_count},
    )
    return request


def add_internal_document(
    db: Session,
    *,
    principal: Principal | None,
    request_id: int,
    name: str,
    file_url: str,
    ip: str | None = None,
) -> InternalDocument:
    principal = require_capability(principal, Capability.MANAGE_INTERNAL_DOCUMENTS)
    payload = parse_input(InternalDocumentInput, name=name, file_url=file_url)
    request = get_or_404(db, InternalRequest, request_id)
    ensure_status(request, InternalStatus.APPROVED, action='attach a document to')
    transition_status(
        db,
        InternalRequest,
        request,
        from_status=InternalStatus.APPROVED,
        to_status=InternalStatus.APPROVED,
        action='add_document',
    )

    document = InternalDocument(
        internal_request_id=request.id,
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
        entity_type='InternalDocument',
        entity_id=document.id,
        ip=ip,
        metadata={'internal_request_id': request.id, 'name': payload.name},
    )
    return document


def delete_internal_document(
    db: Session,
    *,
    principal: Principal | None,
    document_id: int,
    ip: str | None = None,
) -> None:
    principal = require_capability(principal, Capability.MANAGE_INTERNAL_DOCUMENTS)
    document = get_or_404(db, InternalDocument, document_id)
    request = get_or_404(db, InternalRequest, document.internal_request_id)
    ensure_status(request, InternalStatus.APPROVED, action='remove a document from')
    transition_status(
        db,
        InternalRequest,
        request,
        from_status=InternalStatus.APPROVED,
        to_status=InternalStatus.APPROVED,
        action='delete_document',
    )

    db.execute(
        delete(InternalDocument)
        .where(InternalDocument.id == document.id)
        .execution_options(synchronize_session=False)
    )
    db.expunge(document)
    log_audit(
        db,
        actor=principal,
        action='DELETE',
        entity_type='InternalDocument',
        entity_id=document_id,
        ip=ip,
        metadata={'internal_request_id': request.id, 'name': document.name},
    )


def get_internal_available_actions(principal: Principal, request: InternalRequest) -> list[str]:
    actions: list[str] = []
    if request.status == InternalStatus.PENDING and has_capability(principal.role, Capability.REVIEW_INTERNAL_REQUEST):
        actions.extend(['approve', 'reject'])
    if request.status == InternalStatus.APPROVED:
        if has_capability(principal.role, Capability.MANAGE_INTERNAL_DOCUMENTS):
            actions.extend(['add_document', 'delete_document'])
        if has_capability(principal.role, Capability.FINALIZE_INTERNAL_REQUEST):
            actions.append('finalize')
    return actions


def list_internal_requests(
    db: Session,
    *,
    principal: Principal | None,
    status: InternalStatus | None = None,
    category: InternalCategory | None = None,
    limit: int = 100,
) -> list[dict]:
    require_capability(principal, Capability.VIEW_INTERNAL_REQUESTS)
    query = (
        select(
            InternalRequest.id,
            InternalRequest.reference,
            InternalRequest.title,
            InternalRequest.category,
            InternalRequest.amount,
            InternalRequest.status,
            InternalRequest.created_at,
            User.name.label('requester_name'),
        )
        .join(User, User.id == InternalRequest.requested_by_id)
        .order_by(InternalRequest.created_at.desc(), InternalRequest.id.desc())
        .limit(limit)
    )
    if status is not None:
        query = query.where(InternalRequest.status == status)
    if category is not None:
        query = query.where(InternalRequest.category == category)

    return [
        {
            'id': row.id,
            'reference': row.reference,
            'title': row.title,
            'category': status_name(row.category),
            'amount': row.amount,
            'status': status_name(row.status),
            'requester_name': row.requester_name,
            'created_at': row.created_at,
        }
        for row in db.execute(query).all()
    ]


def get_internal_request_detail(db: Session, *, principal: Principal | None, request_id: int) -> dict:
    principal = require_capability(principal, Capability.VIEW_INTERNAL_REQUESTS)
    request = get_or_404(db, InternalRequest, request_id)

    approvals = db.execute(
        select(InternalApproval, User.name)
        .join(User, User.id == InternalApproval.user_id)
        .where(InternalApproval.internal_request_id == request.id)
        .order_by(InternalApproval.created_at.asc(), InternalApproval.id.asc())
    ).all()
    documents = db.execute(
        select(InternalDocument)
        .where(InternalDocument.internal_request_id == request.id)
        .order_by(InternalDocument.id.asc())
    ).scalars().all()

    return {
        'id': request.id,
        'reference': request.reference,
        'title': request.title,
        'description': request.description,
        'category': status_name(request.category),
        'amount': request.amount,
        'status': status_name(request.status),
        'requested_by_id': request.requested_by_id,
        'requester_name': user_name(db, request.requested_by_id),
        'created_at': request.created_at,
        'updated_at': request.updated_at,
        'approvals': [
            {
                'id': approval.id,
                'action': status_name(approval.action),
                'comment': approval.comment,
                'user_id': approval.user_id,
                'user_name': name,
                'created_at': approval.created_at,
            }
            for approval, name in approvals
        ],
        'documents': [
            {
                'id': document.id,
                'name': document.name,
                'file_url': document.file_url,
                'uploaded_by_id': document.uploaded_by_id,
                'created_at': document.created_at,
            }
            for document in documents
        ],
        'available_actions': get_internal_available_actions(principal, request),
    }
