"""Departments: the organisational units requests are filed under.

Anyone signed in may list them; only directors create, edit, toggle or delete them.
A department still referenced by users or purchase requests cannot be deleted, it
can only be deactivated.
"""

from __future__ import annotations

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from app.auth import Capability, Principal
from app.models import Department, PurchaseRequest, User
from app.services.audit_service import log_audit
from app.services.errors import PreconditionFailed, ValidationError
from app.services.schemas import DepartmentInput, DepartmentStatusInput, parse_input
from app.services.workflow_service import get_or_404, require_capability, require_principal


def _ensure_code_free(db: Session, code: str, *, department_id: int | None = None) -> None:
    query = select(Department.id).where(Department.code == code)
    if department_id is not None:
        query = query.where(Department.id != department_id)
    if db.execute(query).first() is not None:
        raise ValidationError(f'A department with code {code} already exists', fields={'code': 'already exists'})


def department_usage(db: Session, department_id: int) -> dict[str, int]:
    users = db.execute(
        select(func.count(User.id)).where(User.department_id == department_id)
    ).scalar_one()
    purchase_requests = db.execute(
        select(func.count(PurchaseRequest.id)).where(PurchaseRequest.department_id == department_id)
    ).scalar_one()
    return {'users_count': users, 'purchase_requests_count': purchase_requests}


def list_departments(db: Session, *, principal: Principal | None) -> list[dict]:
    require_principal(principal)
    users = (
        select(User.department_id, func.count(User.id).label('users_count'))
        .group_by(User.department_id)
        .subquery()
    )
    requests = (
        select(PurchaseRequest.department_id, func.count(PurchaseRequest.id).label('purchase_requests_count'))
        .group_by(PurchaseRequest.department_id)
        .subquery()
    )
    rows = db.execute(
        select(
            Department,
            func.coalesce(users.c.users_count, 0),
            func.coalesce(requests.c.purchase_requests_count, 0),
        )
        .outerjoin(users, users.c.department_id == Department.id)
        .outerjoin(requests, requests.c.department_id == Department.id)
        .order_by(Department.name.asc())
    ).all()
    return [
        {
            'id': department.id,
            'name': department.name,
            'code': department.code,
            'description': department.description,
            'active': department.active,
            'users_count': users_count,
            'purchase_requests_count': requests_count,
            'created_at': department.created_at,
        }
        for department, users_count, requests_count in rows
    ]


def create_department(
    db: Session,
    *,
    principal: Principal | None,
    name: str,
    code: str,
    description: str | None = None,
    ip: str | None = None,
) -> Department:
    principal = require_capability(principal, Capability.MANAGE_DEPARTMENTS)
    payload = parse_input(DepartmentInput, name=name, code=code, description=description)
    _ensure_code_free(db, payload.code)

    department = Department(
        name=payload.name,
        code=payload.code,
        description=payload.description or None,
        active=True,
    )
    db.add(department)
    db.flush()
    log_audit(
        db,
        actor=principal,
        action='CREATE',
        entity_type='Department',
        entity_id=department.id,
        ip=ip,
        metadata={'name': department.name, 'code': department.code},
    )
    return department


def update_department(
    db: Session,
    *,
    principal: Principal | None,
    department_id: int,
    name: str,
    code: str,
    description: str | None = None,
    active: bool | None = None,
    ip: str | None = None,
) -> Department:
    principal = require_capability(principal, Capability.MANAGE_DEPARTMENTS)
    payload = parse_input(DepartmentInput, name=name, code=code, description=description, active=active)
    department = get_or_404(db, Department, department_id)
    if payload.code != department.code:
        _ensure_code_free(db, payload.code, department_id=department.id)

    department.name = payload.name
    department.code = payload.code
    department.description = payload.description or None
    if payload.active is not None:
        department.active = payload.active
    db.flush()
    log_audit(
        db,
        actor=principal,
        action='UPDATE',
        entity_type='Department',
        entity_id=department.id,
        ip=ip,
        metadata={'name': department.name, 'code': department.code},
    )
    return department


def set_department_active(
    db: Session,
    *,
    principal: Principal | None,
    department_id: int,
    active: bool,
    ip: str | None = None,
) -> Department:
    principal = require_capability(principal, Capability.MANAGE_DEPARTMENTS)
    payload = parse_input(DepartmentStatusInput, active=active)
    department = get_or_404(db, Department, department_id)
    department.active = payload.active
    db.flush()
    log_audit(
        db,
        actor=principal,
        action='UPDATE',
        entity_type='Department',
        entity_id=department.id,
        ip=ip,
        metadata={'action': 'activated' if payload.active else 'deactivated', 'name': department.name},
    )
    return department


def delete_department(
    db: Session,
    *,
    principal: Principal | None,
    department_id: int,
    ip: str | None = None,
) -> None:
    principal = require_capability(principal, Capability.MANAGE_DEPARTMENTS)
    department = get_or_404(db, Department, department_id)
    usage = department_usage(db, department.id)
    if usage['users_count']:
        raise PreconditionFailed(
            f"Cannot delete: {usage['users_count']} user(s) belong to this department",
            context=usage,
        )
    if usage['purchase_requests_count']:
        raise PreconditionFailed(
            f"Cannot delete: {usage['purchase_requests_count']} purchase request(s) belong to this department",
            context=usage,
        )

    db.execute(delete(Department).where(Department.id == department.id).execution_options(synchronize_session=False))
    db.expunge(department)
    log_audit(
        db,
        actor=principal,
        action='DELETE',
        entity_type='Department',
        entity_id=department_id,
        ip=ip,
        metadata={'name': department.name, 'code': department.code},
    )
