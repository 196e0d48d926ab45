"""Failure kinds raised by the request engines.

Every failure carries a human readable message plus a ``context`` dict that the
presentation layer uses to render checklists and disabled buttons, e.g.::

    raise PreconditionFailed(
        '2 quotes required, you have 1',
        context={'quotes_count': 1, 'quotes_required': 2, 'has_selected_quote': True},
    )
"""

from __future__ import annotations


class WorkflowError(Exception):
    kind = 'WorkflowError'
    http_status = 400

    def __init__(self, message: str, *, context: dict | None = None) -> None:
        self.message = message
        self.context = context or {}
        super().__init__(message)

    def to_result(self) -> dict:
        return {
            'success': False,
            'error': self.message,
            'kind': self.kind,
            'context': self.context,
        }


class Unauthenticated(WorkflowError):
    kind = 'Unauthenticated'
    http_status = 401

    def __init__(self, message: str = 'Not authenticated', *, context: dict | None = None) -> None:
        super().__init__(message, context=context)


class Forbidden(WorkflowError):
    kind = 'Forbidden'
    http_status = 403


class NotFound(WorkflowError):
    """Raised when an aggregate or child id does not resolve.

    Args:
        resource: Entity name, e.g. ``'PurchaseRequest'`` or ``'Quote'``.
        resource_id: The id that was looked up.
    """

    kind = 'NotFound'
    http_status = 404

    def __init__(self, resource: str, resource_id: int | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        message = f'{resource} not found'
        if resource_id is not None:
            message = f'{resource} {resource_id} not found'
        super().__init__(message, context={'resource': resource, 'id': resource_id})


class InvalidState(WorkflowError):
    """The aggregate is not in a status that allows the transition.

    Also raised when a concurrent caller already moved the aggregate, since the
    status-guarded update then matches no row.
    """

    kind = 'InvalidState'
    http_status = 409

    def __init__(self, message: str, *, status: str, expected: list[str] | None = None) -> None:
        self.status = status
        self.expected = expected or []
        super().__init__(message, context={'status': status, 'expected': self.expected})


class PreconditionFailed(WorkflowError):
    kind = 'PreconditionFailed'
    http_status = 422


class ValidationError(WorkflowError):
    kind = 'ValidationError'
    http_status = 400

    def __init__(self, message: str, *, fields: dict[str, str] | None = None) -> None:
        self.fields = fields or {}
        super().__init__(message, context={'fields': self.fields})


class InfrastructureError(WorkflowError):
    kind = 'InfrastructureError'
    http_status = 500
