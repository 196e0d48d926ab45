from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from app.auth import Capability, Principal, roles_with
from app.models import ApprovalAction, PurchaseRequest, RequestStatus
from app.services.audit_service import log_audit
from app.services.errors import PreconditionFailed
from app.services.notification_service import NotificationOutbox, email_for_user, emails_for_roles, user_name
from app.services.purchase_request_service import get_selected_quote, notification_context, record_approval
from app.services.schemas import CommentInput, RejectionInput, parse_input
from app.services.workflow_service import ensure_status, get_or_404, require_capability, transition_status

logger = logging.getLogger(__name__)


def validate_request(
    db: Session,
    *,
    principal: Principal | None,
    request_id: int,
    comment: str | None = None,
    outbox: NotificationOutbox | None = None,
    ip: str | None = None,
) -> PurchaseRequest:
    principal = require_capability(principal, Capability.REVIEW_AS_DIRECTOR)
    payload = parse_input(CommentInput, comment=comment)
    request = get_or_404(db, PurchaseRequest, request_id)
    ensure_status(request, RequestStatus.APPROVED, action='validate')
    if request.selected_quote_id is None:
        raise PreconditionFailed('No quote selected', context={'has_selected_quote': False})

    selected = get_selected_quote(db, request)
    if selected is not None:
        total_final = selected.amount
    else:
        logger.warning(
            'Selected quote %s of %s is missing, using the estimated total',
            request.selected_quote_id,
            request.reference,
        )
        total_final = request.total_estimated

    transition_status(
        db,
        PurchaseRequest,
        request,
        from_status=RequestStatus.APPROVED,
        to_status=RequestStatus.VALIDATED,
        action='validate',
        total_final=total_final,
    )
    record_approval(db, request, principal=principal, action=ApprovalAction.APPROVE, comment=payload.comment)
    log_audit(
        db,
        actor=principal,
        action='UPDATE',
        entity_type='PurchaseRequest',
        entity_id=request.id,
        ip=ip,
        metadata={'transition': 'validate', 'from': 'APPROVED', 'to': 'VALIDATED', 'total_final': str(total_final)},
    )

    if outbox is not None:
        context = notification_context(
            db,
            request,
            supplier_name=selected.supplier_name if selected else '',
            actor_name=principal.name or user_name(db, principal.id),
            comment=payload.comment,
        )
        outbox.queue(
            'purchase_validated',
            emails_for_roles(db, roles_with(Capability.FINALIZE_PURCHASE_REQUEST)),
            {**context, 'for_accountant': True},
        )
        outbox.queue('purchase_validated', email_for_user(db, request.user_id), context)
    return request


def reject_as_director(
    db: Session,
    *,
    principal: Principal | None,
    request_id: int,
    comment: str,
    outbox: NotificationOutbox | None = None,
    ip: str | None = None,
) -> PurchaseRequest:
    principal = require_capability(principal, Capability.REVIEW_AS_DIRECTOR)
    payload = parse_input(RejectionInput, comment=comment)
    request = get_or_404(db, PurchaseRequest, request_id)
    ensure_status(request, RequestStatus.APPROVED, action='reject')

    transition_status(
        db,
        PurchaseRequest,
        request,
        from_status=RequestStatus.APPROVED,
        to_status=RequestStatus.REJECTED,
        action='director_reject',
    )
    record_approval(db, request, principal=principal, action=ApprovalAction.REJECT, comment=payload.comment)
    log_audit(
        db,
        actor=principal,
        action='UPDATE',
        entity_type='PurchaseRequest',
        entity_id=request.id,
        ip=ip,
        metadata={'transition': 'director_reject', 'from': 'APPROVED', 'to': 'REJECTED', 'comment': payload.comment},
    )

    if outbox is not None:
        outbox.queue(
            'purchase_rejected',
            email_for_user(db, request.user_id) + emails_for_roles(db, roles_with(Capability.REVIEW_AS_PURCHASING)),
            notification_context(
                db,
                request,
                actor_name=principal.name or user_name(db, principal.id),
                actor_role='Director',
                comment=payload.comment,
            ),
        )
    return request
