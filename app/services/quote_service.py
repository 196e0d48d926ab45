"""Purchasing stage: collect supplier quotes, pick one, then approve or reject.

Any collected quote may be selected. The cheapest one is only highlighted by the
detail view, buyers are free to pick a pricier offer.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal

from sqlalchemy import delete
from sqlalchemy.orm import Session

from app.auth import Capability, Principal, roles_with
from app.models import ApprovalAction, PurchaseRequest, Quote, RequestStatus
from app.services.audit_service import log_audit
from app.services.errors import NotFound, PreconditionFailed
from app.services.notification_service import NotificationOutbox, email_for_user, emails_for_roles, user_name
from app.services.purchase_request_service import (
    QUOTES_REQUIRED,
    approval_checklist,
    get_selected_quote,
    notification_context,
    record_approval,
)
from app.services.schemas import CommentInput, QuoteInput, RejectionInput, parse_input
from app.services.workflow_service import (
    ensure_status,
    get_or_404,
    require_capability,
    transition_status,
)


def add_quote(
    db: Session,
    *,
    principal: Principal | None,
    request_id: int,
    supplier_name: str,
    amount: Decimal | str | float,
    valid_until: date | str,
    supplier_contact: str | None = None,
    notes: str | None = None,
    ip: str | None = None,
) -> Quote:
    principal = require_capability(principal, Capability.ADD_QUOTE)
    payload = parse_input(
        QuoteInput,
        supplier_name=supplier_name,
        supplier_contact=supplier_contact,
        amount=amount,
        valid_until=valid_until,
        notes=notes,
    )
    request = get_or_404(db, PurchaseRequest, request_id)
    ensure_status(request, RequestStatus.PENDING, action='add a quote to')
    transition_status(
        db,
        PurchaseRequest,
        request,
        from_status=RequestStatus.PENDING,
        to_status=RequestStatus.PENDING,
        action='add_quote',
    )

    quote = Quote(
        purchase_request_id=request.id,
        supplier_name=payload.supplier_name,
        supplier_contact=payload.supplier_contact or None,
        amount=payload.amount,
        valid_until=payload.valid_until,
        notes=payload.notes or None,
        created_by_id=principal.id,
    )
    db.add(quote)
    db.flush()

    log_audit(
        db,
        actor=principal,
        action='CREATE',
        entity_type='Quote',
        entity_id=quote.id,
        ip=ip,
        metadata={
            'purchase_request_id': request.id,
            'supplier_name': quote.supplier_name,
            'amount': str(quote.amount),
        },
    )
    return quote


def select_quote(
    db: Session,
    *,
    principal: Principal | None,
    request_id: int,
    quote_id: int,
    ip: str | None = None,
) -> PurchaseRequest:
    principal = require_capability(principal, Capability.MANAGE_QUOTES)
    request = get_or_404(db, PurchaseRequest, request_id)
    ensure_status(request, RequestStatus.PENDING, action='select a quote for')
    quote = db.get(Quote, quote_id)
    if quote is None or quote.purchase_request_id != request.id:
        raise NotFound('Quote', quote_id)

    previous = request.selected_quote_id
    transition_status(
        db,
        PurchaseRequest,
        request,
        from_status=RequestStatus.PENDING,
        to_status=RequestStatus.PENDING,
        action='select_quote',
        selected_quote_id=quote.id,
    )
    log_audit(
        db,
        actor=principal,
        action='UPDATE',
        entity_type='PurchaseRequest',
        entity_id=request.id,
        ip=ip,
        metadata={
            'selected_quote_id': quote.id,
            'previous_quote_id': previous,
            'supplier_name': quote.supplier_name,
            'amount': str(quote.amount),
        },
    )
    return request


def delete_quote(
    db: Session,
    *,
    principal: Principal | None,
    quote_id: int,
    ip: str | None = None,
) -> None:
    principal = require_capability(principal, Capability.MANAGE_QUOTES)
    quote = get_or_404(db, Quote, quote_id)
    request = get_or_404(db, PurchaseRequest, quote.purchase_request_id)
    ensure_status(request, RequestStatus.PENDING, action='delete a quote of')
    if request.selected_quote_id == quote.id:
        raise PreconditionFailed(
            'Cannot delete the selected quote',
            context={'quote_id': quote.id, 'selected_quote_id': request.selected_quote_id},
        )

    transition_status(
        db,
        PurchaseRequest,
        request,
        from_status=RequestStatus.PENDING,
        to_status=RequestStatus.PENDING,
        action='delete_quote',
    )
    db.execute(delete(Quote).where(Quote.id == quote.id).execution_options(synchronize_session=False))
    db.expunge(quote)

    log_audit(
        db,
        actor=principal,
        action='DELETE',
        entity_type='Quote',
        entity_id=quote_id,
        ip=ip,
        metadata={
            'purchase_request_id': request.id,
            'supplier_name': quote.supplier_name,
            'amount': str(quote.amount),
        },
    )


def approve_request(
    db: Session,
    *,
    principal: Principal | None,
    request_id: int,
    comment: str | None = None,
    outbox: NotificationOutbox | None = None,
    ip: str | None = None,
) -> PurchaseRequest:
    principal = require_capability(principal, Capability.REVIEW_AS_PURCHASING)
    payload = parse_input(CommentInput, comment=comment)
    request = get_or_404(db, PurchaseRequest, request_id)
    ensure_status(request, RequestStatus.PENDING, action='approve')

    checklist = approval_checklist(db, request)
    if checklist['quotes_count'] < QUOTES_REQUIRED:
        raise PreconditionFailed(
            f"{QUOTES_REQUIRED} quotes required, you have {checklist['quotes_count']}",
            context=checklist,
        )
    if not checklist['has_selected_quote']:
        raise PreconditionFailed('Select a quote before approving', context=checklist)

    transition_status(
        db,
        PurchaseRequest,
        request,
        from_status=RequestStatus.PENDING,
        to_status=RequestStatus.APPROVED,
        action='approve',
    )
    record_approval(db, request, principal=principal, action=ApprovalAction.APPROVE, comment=payload.comment)
    log_audit(
        db,
        actor=principal,
        action='UPDATE',
        entity_type='PurchaseRequest',
        entity_id=request.id,
        ip=ip,
        metadata={'transition': 'approve', 'from': 'PENDING', 'to': 'APPROVED', 'quotes_count': checklist['quotes_count']},
    )

    if outbox is not None:
        selected = get_selected_quote(db, request)
        outbox.queue(
            'purchase_approved',
            emails_for_roles(db, roles_with(Capability.REVIEW_AS_DIRECTOR)),
            notification_context(
                db,
                request,
                supplier_name=selected.supplier_name,
                selected_amount=selected.amount,
                quotes_count=checklist['quotes_count'],
                actor_name=principal.name or user_name(db, principal.id),
                comment=payload.comment,
            ),
        )
    return request


def reject_request(
    db: Session,
    *,
    principal: Principal | None,
    request_id: int,
    comment: str,
    outbox: NotificationOutbox | None = None,
    ip: str | None = None,
) -> PurchaseRequest:
    principal = require_capability(principal, Capability.REVIEW_AS_PURCHASING)
    payload = parse_input(RejectionInput, comment=comment)
    request = get_or_404(db, PurchaseRequest, request_id)
    ensure_status(request, RequestStatus.PENDING, action='reject')

    transition_status(
        db,
        PurchaseRequest,
        request,
        from_status=RequestStatus.PENDING,
        to_status=RequestStatus.REJECTED,
        action='reject',
    )
    record_approval(db, request, principal=principal, action=ApprovalAction.REJECT, comment=payload.comment)
    log_audit(
        db,
        actor=principal,
        action='UPDATE',
        entity_type='PurchaseRequest',
        entity_id=request.id,
        ip=ip,
        metadata={'transition': 'reject', 'from': 'PENDING', 'to': 'REJECTED', 'comment': payload.comment},
    )

    if outbox is not None:
        outbox.queue(
            'purchase_rejected',
            email_for_user(db, request.user_id),
            notification_context(
                db,
                request,
                actor_name=principal.name or user_name(db, principal.id),
                actor_role='Purchasing',
                comment=payload.comment,
            ),
        )
    return request
