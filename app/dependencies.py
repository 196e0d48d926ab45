from fastapi import Request
from fastapi.encoders import jsonable_encoder

from app.services.document_store import DocumentStore, get_document_store
from app.services.notification_service import NotificationOutbox, build_outbox


def get_client_ip(request: Request) -> str | None:
    forwarded_for = request.headers.get('x-forwarded-for')
    if forwarded_for:
        return forwarded_for.split(',')[0].strip()
    if request.client:
        return request.client.host
    return None


def get_outbox() -> NotificationOutbox:
    return build_outbox()


def get_store() -> DocumentStore:
    return get_document_store()


def success(data) -> dict:
    return {'success': True, 'data': jsonable_encoder(data)}
