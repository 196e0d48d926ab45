from dataclasses import dataclass
from enum import Enum

from fastapi import Request

from app.models import Role


class Capability(str, Enum):
    CREATE_PURCHASE_REQUEST = 'CREATE_PURCHASE_REQUEST'
    ADD_QUOTE = 'ADD_QUOTE'
    MANAGE_QUOTES = 'MANAGE_QUOTES'
    REVIEW_AS_PURCHASING = 'REVIEW_AS_PURCHASING'
    REVIEW_AS_DIRECTOR = 'REVIEW_AS_DIRECTOR'
    MANAGE_DOCUMENTS = 'MANAGE_DOCUMENTS'
    FINALIZE_PURCHASE_REQUEST = 'FINALIZE_PURCHASE_REQUEST'
    VIEW_ALL_PURCHASE_REQUESTS = 'VIEW_ALL_PURCHASE_REQUESTS'
    CREATE_INTERNAL_REQUEST = 'CREATE_INTERNAL_REQUEST'
    REVIEW_INTERNAL_REQUEST = 'REVIEW_INTERNAL_REQUEST'
    MANAGE_INTERNAL_DOCUMENTS = 'MANAGE_INTERNAL_DOCUMENTS'
    FINALIZE_INTERNAL_REQUEST = 'FINALIZE_INTERNAL_REQUEST'
    VIEW_INTERNAL_REQUESTS = 'VIEW_INTERNAL_REQUESTS'
    UPLOAD_FILES = 'UPLOAD_FILES'
    MANAGE_DEPARTMENTS = 'MANAGE_DEPARTMENTS'


# Overlaps between roles are declared here and nowhere else.
ROLE_CAPABILITIES: dict[Role, frozenset[Capability]] = {
    Role.USER: frozenset({
        Capability.CREATE_PURCHASE_REQUEST,
    }),
    Role.PURCHASING: frozenset({
        Capability.ADD_QUOTE,
        Capability.MANAGE_QUOTES,
        Capability.REVIEW_AS_PURCHASING,
        Capability.VIEW_ALL_PURCHASE_REQUESTS,
        Capability.CREATE_INTERNAL_REQUEST,
        Capability.MANAGE_INTERNAL_DOCUMENTS,
        Capability.FINALIZE_INTERNAL_REQUEST,
        Capability.VIEW_INTERNAL_REQUESTS,
        Capability.UPLOAD_FILES,
    }),
    Role.DIRECTOR: frozenset({
        Capability.ADD_QUOTE,
        Capability.REVIEW_AS_DIRECTOR,
        Capability.VIEW_ALL_PURCHASE_REQUESTS,
        Capability.REVIEW_INTERNAL_REQUEST,
        Capability.VIEW_INTERNAL_REQUESTS,
        Capability.UPLOAD_FILES,
        Capability.MANAGE_DEPARTMENTS,
    }),
    Role.ACCOUNTANT: frozenset({
        Capability.MANAGE_DOCUMENTS,
        Capability.FINALIZE_PURCHASE_REQUEST,
        Capability.VIEW_ALL_PURCHASE_REQUESTS,
        Capability.VIEW_INTERNAL_REQUESTS,
        Capability.UPLOAD_FILES,
    }),
}


@dataclass
class Principal:
    id: int
    role: Role
    department_id: int | None = None
    name: str | None = None
    email: str | None = None
    active: bool = True


def has_capability(role: Role, capability: Capability) -> bool:
    return capability in ROLE_CAPABILITIES.get(role, frozenset())


def roles_with(capability: Capability) -> list[Role]:
    return [role for role, capabilities in ROLE_CAPABILITIES.items() if capability in capabilities]


def get_current_principal(request: Request) -> Principal | None:
    # Authorization happens in the services, which reject a missing principal.
    return getattr(request.state, 'principal', None)
