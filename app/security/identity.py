from __future__ import annotations

import logging

from fastapi import FastAPI, Request

from app.auth import Principal
from app.models import Role

logger = logging.getLogger(__name__)

PRINCIPAL_ID_HEADER = 'x-principal-id'
PRINCIPAL_ROLE_HEADER = 'x-principal-role'
PRINCIPAL_DEPARTMENT_HEADER = 'x-principal-department'
PRINCIPAL_NAME_HEADER = 'x-principal-name'
PRINCIPAL_EMAIL_HEADER = 'x-principal-email'


def _optional_int(value: str | None) -> int | None:
    if value is None or not value.strip():
        return None
    return int(value)


def principal_from_headers(headers) -> Principal | None:
    """Build the principal the upstream gateway authenticated.

    Missing or malformed identity headers mean no principal; the engines then
    answer ``Unauthenticated``.
    """
    raw_id = headers.get(PRINCIPAL_ID_HEADER)
    raw_role = headers.get(PRINCIPAL_ROLE_HEADER)
    if not raw_id or not raw_role:
        return None
    try:
        principal_id = int(raw_id)
        role = Role(raw_role.strip().upper())
        department_id = _optional_int(headers.get(PRINCIPAL_DEPARTMENT_HEADER))
    except ValueError:
        logger.warning('Ignoring malformed identity headers: id=%r role=%r', raw_id, raw_role)
        return None
    return Principal(
        id=principal_id,
        role=role,
        department_id=department_id,
        name=headers.get(PRINCIPAL_NAME_HEADER) or None,
        email=headers.get(PRINCIPAL_EMAIL_HEADER) or None,
    )


def install_identity_middleware(app: FastAPI) -> None:
    @app.middleware('http')
    async def identity_middleware(request: Request, call_next):
        request.state.principal = principal_from_headers(request.headers)
        return await call_next(request)
