"""Shared guards for the request engines.

Every status change goes through :func:`transition_status`, which issues
``UPDATE ... WHERE id = :id AND status = :from``. When another transaction moved
the aggregate first, no row matches and the caller gets :class:`InvalidState`
instead of silently overwriting the newer status.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import TypeVar

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from app.auth import Capability, Principal, has_capability
from app.services.errors import Forbidden, InvalidState, NotFound, Unauthenticated

logger = logging.getLogger(__name__)

EntityT = TypeVar('EntityT')


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def status_name(status) -> str:
    return status.value if isinstance(status, Enum) else str(status)


def require_principal(principal: Principal | None) -> Principal:
    if principal is None:
        raise Unauthenticated()
    if not principal.active:
        raise Forbidden('Account is disabled', context={'principal_id': principal.id})
    return principal


def require_capability(principal: Principal | None, capability: Capability) -> Principal:
    principal = require_principal(principal)
    if not has_capability(principal.role, capability):
        raise Forbidden(
            f'Role {status_name(principal.role)} is not allowed to perform this action',
            context={'role': status_name(principal.role), 'capability': capability.value},
        )
    return principal


def get_or_404(db: Session, model: type[EntityT], entity_id: int) -> EntityT:
    entity = db.get(model, entity_id)
    if entity is None:
        raise NotFound(model.__name__, entity_id)
    return entity


def ensure_status(entity, *allowed, action: str) -> None:
    if entity.status in allowed:
        return
    current = status_name(entity.status)
    expected = [status_name(status) for status in allowed]
    raise InvalidState(
        f'Cannot {action} a request in status {current} (expected {" or ".join(expected)})',
        status=current,
        expected=expected,
    )


def transition_status(db: Session, model, entity, *, from_status, to_status, action: str, **values) -> None:
    """Move ``entity`` from ``from_status`` to ``to_status`` in one conditional update.

    Passing the same status twice keeps the status but still guards child mutations
    (quotes, documents, items) against a concurrent transition of the parent.
    """
    result = db.execute(
        update(model)
        .where(model.id == entity.id, model.status == from_status)
        .values(status=to_status, updated_at=_now(), **values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        current = db.execute(select(model.status).where(model.id == entity.id)).scalar_one_or_none()
        if current is None:
            raise NotFound(model.__name__, entity.id)
        raise InvalidState(
            f'{model.__name__} {entity.id} was already transitioned to {status_name(current)}',
            status=status_name(current),
            expected=[status_name(from_status)],
        )
    db.refresh(entity)
    if from_status != to_status:
        logger.info(
            '%s %s: %s -> %s (%s)',
            model.__name__,
            entity.id,
            status_name(from_status),
            status_name(to_status),
            action,
        )
