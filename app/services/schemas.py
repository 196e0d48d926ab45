from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Annotated, TypeVar

from pydantic import BaseModel, ConfigDict, Field, StringConstraints, field_validator
from pydantic import ValidationError as PydanticValidationError

from app.models import DocumentType, InternalCategory
from app.services.errors import ValidationError

MAX_AMOUNT = Decimal('999999999')
# Matches the Numeric(14, 2) money columns, so a stored value is never rounded.
MONEY_DIGITS = 14
MONEY_PLACES = 2
MIN_REJECTION_COMMENT = 10

Title = Annotated[str, StringConstraints(strip_whitespace=True, min_length=3, max_length=200)]
ItemName = Annotated[str, StringConstraints(strip_whitespace=True, min_length=2, max_length=200)]
SupplierName = Annotated[str, StringConstraints(strip_whitespace=True, min_length=2, max_length=200)]
DocumentName = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=200)]
FileUrl = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]
DepartmentName = Annotated[str, StringConstraints(strip_whitespace=True, min_length=2, max_length=100)]
DepartmentCode = Annotated[
    str,
    StringConstraints(strip_whitespace=True, to_upper=True, min_length=2, max_length=10, pattern=r'^[A-Za-z0-9]+$'),
]

OptionalText200 = Annotated[str, StringConstraints(strip_whitespace=True, max_length=200)] | None
OptionalText500 = Annotated[str, StringConstraints(strip_whitespace=True, max_length=500)] | None
OptionalText1000 = Annotated[str, StringConstraints(strip_whitespace=True, max_length=1000)] | None
OptionalText2000 = Annotated[str, StringConstraints(strip_whitespace=True, max_length=2000)] | None


def _money(*, positive: bool):
    bound = {'gt': 0} if positive else {'ge': 0}
    return Field(le=MAX_AMOUNT, max_digits=MONEY_DIGITS, decimal_places=MONEY_PLACES, **bound)


class _Input(BaseModel):
    model_config = ConfigDict(extra='ignore')


class PurchaseItemInput(_Input):
    name: ItemName
    description: OptionalText1000 = None
    quantity: int = Field(gt=0, le=999999)
    estimated_price: Decimal = _money(positive=False)


class PurchaseRequestInput(_Input):
    title: Title
    description: OptionalText2000 = None
    items: list[PurchaseItemInput] = Field(min_length=1, max_length=50)


class QuoteInput(_Input):
    supplier_name: SupplierName
    supplier_contact: OptionalText200 = None
    amount: Decimal = _money(positive=True)
    valid_until: date
    notes: OptionalText1000 = None

    @field_validator('valid_until')
    @classmethod
    def _not_expired(cls, value: date) -> date:
        if value < date.today():
            raise ValueError('validity date must not be in the past')
        return value


class CommentInput(_Input):
    comment: OptionalText1000 = None


class RejectionInput(_Input):
    comment: Annotated[
        str, StringConstraints(strip_whitespace=True, min_length=MIN_REJECTION_COMMENT, max_length=1000)
    ]


class DocumentInput(_Input):
    type: DocumentType
    name: DocumentName
    file_url: FileUrl


class InternalRequestInput(_Input):
    title: Title
    description: OptionalText1000 = None
    category: InternalCategory
    amount: Decimal = _money(positive=True)


class InternalCommentInput(_Input):
    comment: OptionalText500 = None


class InternalRejectionInput(_Input):
    comment: Annotated[
        str, StringConstraints(strip_whitespace=True, min_length=MIN_REJECTION_COMMENT, max_length=500)
    ]


class InternalDocumentInput(_Input):
    name: DocumentName
    file_url: FileUrl


class DepartmentInput(_Input):
    name: DepartmentName
    code: DepartmentCode
    description: OptionalText500 = None
    active: bool | None = None


class DepartmentStatusInput(_Input):
    active: bool


InputT = TypeVar('InputT', bound=BaseModel)


def validation_fields(errors: list[dict]) -> dict[str, str]:
    return {
        '.'.join(str(part) for part in error['loc']) or '__root__': error['msg']
        for error in errors
    }


def parse_input(schema: type[InputT], **values) -> InputT:
    try:
        return schema.model_validate(values)
    except PydanticValidationError as exc:
        fields = validation_fields(exc.errors())
        first_field, first_message = next(iter(fields.items()))
        raise ValidationError(f'Invalid {first_field}: {first_message}', fields=fields) from exc
