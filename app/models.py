from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# SQLite only autoincrements INTEGER primary keys.
Id = BigInteger().with_variant(Integer(), 'sqlite')


class Base(DeclarativeBase):
    pass


class Role(str, Enum):
    USER = 'USER'
    PURCHASING = 'PURCHASING'
    DIRECTOR = 'DIRECTOR'
    ACCOUNTANT = 'ACCOUNTANT'


class RequestStatus(str, Enum):
    DRAFT = 'DRAFT'
    PENDING = 'PENDING'
    # Declared by the schema but never assigned by any transition.
    QUOTED = 'QUOTED'
    APPROVED = 'APPROVED'
    VALIDATED = 'VALIDATED'
    COMPLETED = 'COMPLETED'
    REJECTED = 'REJECTED'


class ApprovalAction(str, Enum):
    APPROVE = 'APPROVE'
    REJECT = 'REJECT'


class DocumentType(str, Enum):
    INVOICE = 'INVOICE'
    RECEIPT = 'RECEIPT'
    DELIVERY_NOTE = 'DELIVERY_NOTE'
    OTHER = 'OTHER'


class InternalStatus(str, Enum):
    PENDING = 'PENDING'
    APPROVED = 'APPROVED'
    REJECTED = 'REJECTED'
    COMPLETED = 'COMPLETED'


class InternalCategory(str, Enum):
    INTERNET = 'INTERNET'
    ELECTRICITY = 'ELECTRICITY'
    WATER = 'WATER'
    PHONE = 'PHONE'
    COFFEE = 'COFFEE'
    OFFICE_SUPPLIES = 'OFFICE_SUPPLIES'
    MAINTENANCE = 'MAINTENANCE'
    CLEANING = 'CLEANING'
    OTHER = 'OTHER'


class Department(Base):
    __tablename__ = 'departments'

    id: Mapped[int] = mapped_column(Id, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    code: Mapped[str] = mapped_column(String(20), nullable=False, unique=True)
    description: Mapped[str | None] = mapped_column(Text)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='true')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class User(Base):
    __tablename__ = 'users'

    id: Mapped[int] = mapped_column(Id, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)
    role: Mapped[Role] = mapped_column(SQLEnum(Role, name='user_role'), nullable=False)
    department_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('departments.id'))
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='true')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class PurchaseRequest(Base):
    __tablename__ = 'purchase_requests'
    __table_args__ = (
        CheckConstraint('total_estimated >= 0', name='purchase_requests_total_estimated_ck'),
    )

    id: Mapped[int] = mapped_column(Id, primary_key=True)
    reference: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    status: Mapped[RequestStatus] = mapped_column(
        SQLEnum(RequestStatus, name='request_status'),
        nullable=False,
        default=RequestStatus.DRAFT,
        server_default='DRAFT',
    )
    total_estimated: Mapped[Decimal] = mapped_column(Numeric(20, 2), nullable=False, default=0)
    total_final: Mapped[Decimal | None] = mapped_column(Numeric(20, 2))
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('users.id'), nullable=False)
    department_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('departments.id'), nullable=False)
    # Points into this request's own quotes; checked by the quote service.
    selected_quote_id: Mapped[int | None] = mapped_column(BigInteger)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class PurchaseItem(Base):
    __tablename__ = 'purchase_items'
    __table_args__ = (
        CheckConstraint('quantity > 0', name='purchase_items_quantity_ck'),
        CheckConstraint('estimated_price >= 0', name='purchase_items_price_ck'),
    )

    id: Mapped[int] = mapped_column(Id, primary_key=True)
    purchase_request_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey('purchase_requests.id', ondelete='CASCADE'), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    estimated_price: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)


class Quote(Base):
    __tablename__ = 'quotes'
    __table_args__ = (
        CheckConstraint('amount > 0', name='quotes_amount_ck'),
    )

    id: Mapped[int] = mapped_column(Id, primary_key=True)
    purchase_request_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey('purchase_requests.id', ondelete='CASCADE'), nullable=False, index=True
    )
    supplier_name: Mapped[str] = mapped_column(Text, nullable=False)
    supplier_contact: Mapped[str | None] = mapped_column(Text)
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    valid_until: Mapped[date] = mapped_column(Date, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text)
    created_by_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('users.id'), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Approval(Base):
    __tablename__ = 'approvals'

    id: Mapped[int] = mapped_column(Id, primary_key=True)
    purchase_request_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey('purchase_requests.id'), nullable=False, index=True
    )
    action: Mapped[ApprovalAction] = mapped_column(SQLEnum(ApprovalAction, name='approval_action'), nullable=False)
    comment: Mapped[str | None] = mapped_column(Text)
    role: Mapped[Role] = mapped_column(SQLEnum(Role, name='user_role'), nullable=False)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('users.id'), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Document(Base):
    __tablename__ = 'documents'

    id: Mapped[int] = mapped_column(Id, primary_key=True)
    purchase_request_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey('purchase_requests.id'), nullable=False, index=True
    )
    type: Mapped[DocumentType] = mapped_column(SQLEnum(DocumentType, name='document_type'), nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    file_url: Mapped[str] = mapped_column(Text, nullable=False)
    uploaded_by_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('users.id'), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class InternalRequest(Base):
    __tablename__ = 'internal_requests'
    __table_args__ = (
        CheckConstraint('amount > 0', name='internal_requests_amount_ck'),
    )

    id: Mapped[int] = mapped_column(Id, primary_key=True)
    reference: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    category: Mapped[InternalCategory] = mapped_column(
        SQLEnum(InternalCategory, name='internal_category'), nullable=False
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    status: Mapped[InternalStatus] = mapped_column(
        SQLEnum(InternalStatus, name='internal_status'),
        nullable=False,
        default=InternalStatus.PENDING,
        server_default='PENDING',
    )
    requested_by_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('users.id'), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class InternalApproval(Base):
    __tablename__ = 'internal_approvals'

    id: Mapped[int] = mapped_column(Id, primary_key=True)
    internal_request_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey('internal_requests.id'), nullable=False, index=True
    )
    action: Mapped[ApprovalAction] = mapped_column(SQLEnum(ApprovalAction, name='approval_action'), nullable=False)
    comment: Mapped[str | None] = mapped_column(Text)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('users.id'), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class InternalDocument(Base):
    __tablename__ = 'internal_documents'

    id: Mapped[int] = mapped_column(Id, primary_key=True)
    internal_request_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey('internal_requests.id'), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(Text, nullable=False)
    file_url: Mapped[str] = mapped_column(Text, nullable=False)
    uploaded_by_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('users.id'), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class DocumentSequence(Base):
    __tablename__ = 'document_sequences'
    __table_args__ = (
        UniqueConstraint('doc_type', 'period_key', name='document_sequences_doc_type_period_key'),
    )

    id: Mapped[int] = mapped_column(Id, primary_key=True)
    doc_type: Mapped[str] = mapped_column(String(20), nullable=False)
    period_key: Mapped[str] = mapped_column(String(10), nullable=False)
    current_value: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class AuditLog(Base):
    __tablename__ = 'audit_log'

    id: Mapped[int] = mapped_column(Id, primary_key=True)
    actor_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('users.id'))
    actor_name: Mapped[str | None] = mapped_column(Text)
    action: Mapped[str] = mapped_column(Text, nullable=False)
    entity_type: Mapped[str] = mapped_column(Text, nullable=False)
    entity_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    ip: Mapped[str | None] = mapped_column(String(64))
    meta: Mapped[dict] = mapped_column('metadata', JSON, nullable=False, default=dict, server_default='{}')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
