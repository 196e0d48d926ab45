from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from app.auth import Principal, get_current_principal
from app.db import get_db
from app.dependencies import get_client_ip, success
from app.models import Department
from app.services.department_service import (
    create_department,
    delete_department,
    department_usage,
    list_departments,
    set_department_active,
    update_department,
)
from app.services.schemas import DepartmentInput, DepartmentStatusInput

router = APIRouter(tags=['departments'])


def _row(db: Session, department: Department) -> dict:
    return success(
        {
            'id': department.id,
            'name': department.name,
            'code': department.code,
            'description': department.description,
            'active': department.active,
            **department_usage(db, department.id),
        }
    )


@router.get('/departments')
def index(
    db: Session = Depends(get_db),
    principal: Principal | None = Depends(get_current_principal),
):
    return success(list_departments(db, principal=principal))


@router.post('/departments', status_code=201)
def create(
    payload: DepartmentInput,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal | None = Depends(get_current_principal),
):
    department = create_department(
        db,
        principal=principal,
        name=payload.name,
        code=payload.code,
        description=payload.description,
        ip=get_client_ip(request),
    )
    db.commit()
    return _row(db, department)


@router.put('/departments/{department_id}')
def update(
    department_id: int,
    payload: DepartmentInput,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal | None = Depends(get_current_principal),
):
    department = update_department(
        db,
        principal=principal,
        department_id=department_id,
        ip=get_client_ip(request),
        **payload.model_dump(),
    )
    db.commit()
    return _row(db, department)


@router.post('/departments/{department_id}/status')
def toggle(
    department_id: int,
    payload: DepartmentStatusInput,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal | None = Depends(get_current_principal),
):
    department = set_department_active(
        db,
        principal=principal,
        department_id=department_id,
        active=payload.active,
        ip=get_client_ip(request),
    )
    db.commit()
    return _row(db, department)


@router.delete('/departments/{department_id}')
def destroy(
    department_id: int,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal | None = Depends(get_current_principal),
):
    delete_department(db, principal=principal, department_id=department_id, ip=get_client_ip(request))
    db.commit()
    return success({'id': department_id, 'deleted': True})
