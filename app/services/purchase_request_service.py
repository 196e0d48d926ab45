from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from app.auth import Capability, Principal, has_capability, roles_with
from app.models import (
    Approval,
    Department,
    Document,
    PurchaseItem,
    PurchaseRequest,
    Quote,
    RequestStatus,
    User,
)
from app.services.audit_service import log_audit
from app.services.errors import Forbidden, InvalidState
from app.services.notification_service import (
    NotificationOutbox,
    emails_for_roles,
    request_url,
    user_name,
)
from app.services.reference_service import next_purchase_reference
from app.services.schemas import PurchaseItemInput, PurchaseRequestInput, parse_input
from app.services.workflow_service import (
    _now,
    ensure_status,
    get_or_404,
    require_capability,
    require_principal,
    status_name,
    transition_status,
)

logger = logging.getLogger(__name__)

QUOTES_REQUIRED = 2
CENT = Decimal('0.01')


def compute_total(items: list[PurchaseItemInput]) -> Decimal:
    total = sum((Decimal(item.quantity) * item.estimated_price for item in items), Decimal('0'))
    return total.quantize(CENT)


def _replace_items(db: Session, request_id: int, items: list[PurchaseItemInput]) -> None:
    """Swap the whole item set of a draft; items are never patched one by one."""
    db.execute(delete(PurchaseItem).where(PurchaseItem.purchase_request_id == request_id))
    for item in items:
        db.add(
            PurchaseItem(
                purchase_request_id=request_id,
                name=item.name,
                description=item.description or None,
                quantity=item.quantity,
                estimated_price=item.estimated_price,
            )
        )
    db.flush()


def _ensure_owner(principal: Principal, request: PurchaseRequest) -> None:
    if request.user_id != principal.id:
        raise Forbidden(
            'Only the requester can change this request',
            context={'owner_id': request.user_id, 'principal_id': principal.id},
        )


def count_items(db: Session, request_id: int) -> int:
    return db.execute(
        select(func.count(PurchaseItem.id)).where(PurchaseItem.purchase_request_id == request_id)
    ).scalar_one()


def count_quotes(db: Session, request_id: int) -> int:
    return db.execute(select(func.count(Quote.id)).where(Quote.purchase_request_id == request_id)).scalar_one()


def count_documents(db: Session, request_id: int) -> int:
    return db.execute(
        select(func.count(Document.id)).where(Document.purchase_request_id == request_id)
    ).scalar_one()


def get_selected_quote(db: Session, request: PurchaseRequest) -> Quote | None:
    if request.selected_quote_id is None:
        return None
    quote = db.get(Quote, request.selected_quote_id)
    if quote is None or quote.purchase_request_id != request.id:
        return None
    return quote


def record_approval(
    db: Session,
    request: PurchaseRequest,
    *,
    principal: Principal,
    action,
    comment: str | None,
) -> Approval:
    approval = Approval(
        purchase_request_id=request.id,
        action=action,
        comment=comment or None,
        role=principal.role,
        user_id=principal.id,
    )
    db.add(approval)
    db.flush()
    return approval


def notification_context(db: Session, request: PurchaseRequest, **extra) -> dict:
    context = {
        'reference': request.reference,
        'title': request.title,
        'requester_name': user_name(db, request.user_id),
        'total_estimated': request.total_estimated,
        'total_final': request.total_final,
        'url': request_url(f'/purchase-requests/{request.id}'),
    }
    context.update(extra)
    return context


def create_purchase_request(
    db: Session,
    *,
    principal: Principal | None,
    title: str,
    description: str | None = None,
    items: list,
    ip: str | None = None,
    now: datetime | None = None,
) -> PurchaseRequest:
    principal = require_capability(principal, Capability.CREATE_PURCHASE_REQUEST)
    if principal.department_id is None:
        raise Forbidden('You must belong to a department to create a request', context={'principal_id': principal.id})
    payload = parse_input(PurchaseRequestInput, title=title, description=description, items=items)

    total = compute_total(payload.items)
    request = PurchaseRequest(
        reference=next_purchase_reference(db, now=now or _now()),
        title=payload.title,
        description=payload.description or None,
        status=RequestStatus.DRAFT,
        total_estimated=total,
        user_id=principal.id,
        department_id=principal.department_id,
    )
    db.add(request)
    db.flush()
    _replace_items(db, request.id, payload.items)

    log_audit(
        db,
        actor=principal,
        action='CREATE',
        entity_type='PurchaseRequest',
        entity_id=request.id,
        ip=ip,
        metadata={'reference': request.reference, 'title': request.title, 'total_estimated': str(total)},
    )
    logger.info('Purchase request %s created by user %s', request.reference, principal.id)
    return request


def update_purchase_request(
    db: Session,
    *,
    principal: Principal | None,
    request_id: int,
    title: str,
    description: str | None = None,
    items: list,
    ip: str | None = None,
) -> PurchaseRequest:
    principal = require_principal(principal)
    payload = parse_input(PurchaseRequestInput, title=title, description=description, items=items)
    request = get_or_404(db, PurchaseRequest, request_id)
    _ensure_owner(principal, request)
    ensure_status(request, RequestStatus.DRAFT, action='edit')

    total = compute_total(payload.items)
    transition_status(
        db,
        PurchaseRequest,
        request,
        from_status=RequestStatus.DRAFT,
        to_status=RequestStatus.DRAFT,
        action='update',
        title=payload.title,
        description=payload.description or None,
        total_estimated=total,
    )
    _replace_items(db, request.id, payload.items)

    log_audit(
        db,
        actor=principal,
        action='UPDATE',
        entity_type='PurchaseRequest',
        entity_id=request.id,
        ip=ip,
        metadata={'items_count': len(payload.items), 'total_estimated': str(total)},
    )
    return request


def submit_purchase_request(
    db: Session,
    *,
    principal: Principal | None,
    request_id: int,
    outbox: NotificationOutbox | None = None,
    ip: str | None = None,
) -> PurchaseRequest:
    principal = require_principal(principal)
    request = get_or_404(db, PurchaseRequest, request_id)
    _ensure_owner(principal, request)
    ensure_status(request, RequestStatus.DRAFT, action='submit')
    items_count = count_items(db, request.id)
    if items_count == 0:
        raise InvalidState('Cannot submit a request without items', status=status_name(request.status), expected=[])

    transition_status(
        db,
        PurchaseRequest,
        request,
        from_status=RequestStatus.DRAFT,
        to_status=RequestStatus.PENDING,
        action='submit',
    )
    log_audit(
        db,
        actor=principal,
        action='UPDATE',
        entity_type='PurchaseRequest',
        entity_id=request.id,
        ip=ip,
        metadata={'transition': 'submit', 'from': 'DRAFT', 'to': 'PENDING'},
    )

    if outbox is not None:
        department = db.get(Department, request.department_id)
        outbox.queue(
            'purchase_submitted',
            emails_for_roles(db, roles_with(Capability.REVIEW_AS_PURCHASING)),
            notification_context(
                db,
                request,
                department=department.name if department else '',
                items_count=items_count,
            ),
        )
    return request


def delete_purchase_request(
    db: Session,
    *,
    principal: Principal | None,
    request_id: int,
    ip: str | None = None,
) -> None:
    principal = require_principal(principal)
    request = get_or_404(db, PurchaseRequest, request_id)
    _ensure_owner(principal, request)
    ensure_status(request, RequestStatus.DRAFT, action='delete')

    db.execute(delete(PurchaseItem).where(PurchaseItem.purchase_request_id == request.id))
    result = db.execute(
        delete(PurchaseRequest)
        .where(PurchaseRequest.id == request.id, PurchaseRequest.status == RequestStatus.DRAFT)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        current = db.execute(
            select(PurchaseRequest.status).where(PurchaseRequest.id == request.id)
        ).scalar_one_or_none()
        raise InvalidState(
            f'PurchaseRequest {request.id} was already transitioned to {status_name(current)}',
            status=status_name(current),
            expected=['DRAFT'],
        )
    db.expunge(request)

    log_audit(
        db,
        actor=principal,
        action='DELETE',
        entity_type='PurchaseRequest',
        entity_id=request_id,
        ip=ip,
        metadata={'reference': request.reference, 'title': request.title},
    )
    logger.info('Purchase request %s deleted by user %s', request.reference, principal.id)


def get_available_actions(principal: Principal, request: PurchaseRequest) -> list[str]:
    """Actions the principal may attempt on the request in its current status.

    Business preconditions (quote count, documents) are reported separately by the
    approval checklist; this only reflects role, ownership and status.
    """
    role = principal.role
    actions: list[str] = []
    if request.status == RequestStatus.DRAFT:
        if request.user_id == principal.id:
            actions.extend(['edit', 'submit', 'delete'])
    elif request.status == RequestStatus.PENDING:
        if has_capability(role, Capability.ADD_QUOTE):
            actions.append('add_quote')
        if has_capability(role, Capability.MANAGE_QUOTES):
            actions.extend(['select_quote', 'delete_quote'])
        if has_capability(role, Capability.REVIEW_AS_PURCHASING):
            actions.extend(['approve', 'reject'])
    elif request.status == RequestStatus.APPROVED:
        if has_capability(role, Capability.REVIEW_AS_DIRECTOR):
            actions.extend(['validate', 'reject'])
    elif request.status == RequestStatus.VALIDATED:
        if has_capability(role, Capability.MANAGE_DOCUMENTS):
            actions.extend(['add_document', 'delete_document'])
        if has_capability(role, Capability.FINALIZE_PURCHASE_REQUEST):
            actions.append('finalize')
    return actions


def approval_checklist(db: Session, request: PurchaseRequest) -> dict:
    return {
        'quotes_count': count_quotes(db, request.id),
        'quotes_required': QUOTES_REQUIRED,
        'has_selected_quote': get_selected_quote(db, request) is not None,
    }


def _ensure_can_view(principal: Principal, request: PurchaseRequest) -> None:
    if has_capability(principal.role, Capability.VIEW_ALL_PURCHASE_REQUESTS):
        return
    if request.user_id != principal.id:
        raise Forbidden('You can only view your own requests', context={'request_id': request.id})


def list_purchase_requests(
    db: Session,
    *,
    principal: Principal | None,
    status: RequestStatus | None = None,
    limit: int = 100,
) -> list[dict]:
    principal = require_principal(principal)
    quotes_count = (
        select(func.count(Quote.id))
        .where(Quote.purchase_request_id == PurchaseRequest.id)
        .correlate(PurchaseRequest)
        .scalar_subquery()
    )
    query = (
        select(
            PurchaseRequest.id,
            PurchaseRequest.reference,
            PurchaseRequest.title,
            PurchaseRequest.status,
            PurchaseRequest.total_estimated,
            PurchaseRequest.total_final,
            PurchaseRequest.created_at,
            User.name.label('requester_name'),
            Department.name.label('department_name'),
            quotes_count.label('quotes_count'),
        )
        .join(User, User.id == PurchaseRequest.user_id)
        .join(Department, Department.id == PurchaseRequest.department_id)
        .order_by(PurchaseRequest.created_at.desc(), PurchaseRequest.id.desc())
        .limit(limit)
    )
    if not has_capability(principal.role, Capability.VIEW_ALL_PURCHASE_REQUESTS):
        query = query.where(PurchaseRequest.user_id == principal.id)
    if status is not None:
        query = query.where(PurchaseRequest.status == status)

    return [
        {
            'id': row.id,
            'reference': row.reference,
            'title': row.title,
            'status': status_name(row.status),
            'total_estimated': row.total_estimated,
            'total_final': row.total_final,
            'requester_name': row.requester_name,
            'department_name': row.department_name,
            'quotes_count': row.quotes_count,
            'created_at': row.created_at,
        }
        for row in db.execute(query).all()
    ]


def get_purchase_request_detail(db: Session, *, principal: Principal | None, request_id: int) -> dict:
    principal = require_principal(principal)
    request = get_or_404(db, PurchaseRequest, request_id)
    _ensure_can_view(principal, request)

    items = db.execute(
        select(PurchaseItem).where(PurchaseItem.purchase_request_id == request.id).order_by(PurchaseItem.id.asc())
    ).scalars().all()
    quotes = db.execute(
        select(Quote).where(Quote.purchase_request_id == request.id).order_by(Quote.amount.asc(), Quote.id.asc())
    ).scalars().all()
    approvals = db.execute(
        select(Approval, User.name)
        .join(User, User.id == Approval.user_id)
        .where(Approval.purchase_request_id == request.id)
        .order_by(Approval.created_at.asc(), Approval.id.asc())
    ).all()
    documents = db.execute(
        select(Document).where(Document.purchase_request_id == request.id).order_by(Document.id.asc())
    ).scalars().all()
    department = db.get(Department, request.department_id)
    selected = get_selected_quote(db, request)

    detail = {
        'id': request.id,
        'reference': request.reference,
        'title': request.title,
        'description': request.description,
        'status': status_name(request.status),
        'total_estimated': request.total_estimated,
        'total_final': request.total_final,
        'user_id': request.user_id,
        'requester_name': user_name(db, request.user_id),
        'department_id': request.department_id,
        'department_name': department.name if department else None,
        'selected_quote_id': selected.id if selected else None,
        'created_at': request.created_at,
        'updated_at': request.updated_at,
        'items': [
            {
                'id': item.id,
                'name': item.name,
                'description': item.description,
                'quantity': item.quantity,
                'estimated_price': item.estimated_price,
                'line_total': (Decimal(item.quantity) * item.estimated_price).quantize(CENT),
            }
            for item in items
        ],
        'quotes': [
            {
                'id': quote.id,
                'supplier_name': quote.supplier_name,
                'supplier_contact': quote.supplier_contact,
                'amount': quote.amount,
                'valid_until': quote.valid_until,
                'notes': quote.notes,
                'selected': selected is not None and quote.id == selected.id,
            }
            for quote in quotes
        ],
        # Display hint only; any quote may be selected.
        'cheapest_quote_id': quotes[0].id if quotes else None,
        'approvals': [
            {
                'id': approval.id,
                'action': status_name(approval.action),
                'role': status_name(approval.role),
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
                'type': status_name(document.type),
                'name': document.name,
                'file_url': document.file_url,
                'uploaded_by_id': document.uploaded_by_id,
                'created_at': document.created_at,
            }
            for document in documents
        ],
        'available_actions': get_available_actions(principal, request),
    }
    if request.status == RequestStatus.PENDING:
        detail['approval_checklist'] = {
            'quotes_count': len(quotes),
            'quotes_required': QUOTES_REQUIRED,
            'has_selected_quote': selected is not None,
        }
    return detail

