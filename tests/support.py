from __future__ import annotations

import unittest
from datetime import date, timedelta
from decimal import Decimal

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.auth import Principal
from app.models import Base, Department, Role, User
from app.services.accountant_service import add_document
from app.services.director_service import validate_request
from app.services.purchase_request_service import create_purchase_request, submit_purchase_request
from app.services.quote_service import add_quote, approve_request, select_quote


def make_session() -> Session:
    engine = create_engine(
        'sqlite://',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)()


def as_principal(user: User) -> Principal:
    return Principal(
        id=user.id,
        role=user.role,
        department_id=user.department_id,
        name=user.name,
        email=user.email,
        active=user.active,
    )


def future(days: int = 30) -> date:
    return date.today() + timedelta(days=days)


class RecordingSender:
    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []

    def send(self, *, to, subject, html) -> bool:
        self.sent.append((to, subject))
        return True


class FailingSender:
    def __init__(self) -> None:
        self.calls = 0

    def send(self, *, to, subject, html) -> bool:
        self.calls += 1
        raise ConnectionRefusedError('smtp down')


class WorkflowTestCase(unittest.TestCase):
    """Seeds one department and one account per role into an in-memory database."""

    def setUp(self) -> None:
        self.db = make_session()
        self.addCleanup(self.db.close)

        it = Department(name='Information Technology', code='IT', active=True)
        fin = Department(name='Finance', code='FIN', active=True)
        self.db.add_all([it, fin])
        self.db.flush()
        self.department = it

        def user(name: str, email: str, role: Role, department_id: int | None) -> Principal:
            row = User(name=name, email=email, role=role, department_id=department_id, active=True)
            self.db.add(row)
            self.db.flush()
            return as_principal(row)

        self.requester = user('Awa Requester', 'awa@example.com', Role.USER, it.id)
        self.other_requester = user('Omar Requester', 'omar@example.com', Role.USER, it.id)
        self.buyer = user('Binta Buyer', 'buyer@example.com', Role.PURCHASING, it.id)
        self.director = user('Dame Director', 'director@example.com', Role.DIRECTOR, None)
        self.accountant = user('Fatou Accountant', 'accountant@example.com', Role.ACCOUNTANT, fin.id)
        self.db.commit()

    def create_draft(self, *, quantity: int = 2, price: str = '500000', title: str = 'Laptops'):
        return create_purchase_request(
            self.db,
            principal=self.requester,
            title=title,
            items=[{'name': 'Laptop', 'quantity': quantity, 'estimated_price': Decimal(price)}],
        )

    def create_pending(self):
        request = self.create_draft()
        submit_purchase_request(self.db, principal=self.requester, request_id=request.id)
        return request

    def add_quotes(self, request, *amounts: str) -> list:
        return [
            add_quote(
                self.db,
                principal=self.buyer,
                request_id=request.id,
                supplier_name=f'Supplier {index}',
                amount=Decimal(amount),
                valid_until=future(),
            )
            for index, amount in enumerate(amounts, start=1)
        ]

    def create_approved(self):
        request = self.create_pending()
        cheaper, _ = self.add_quotes(request, '950000', '980000')
        select_quote(self.db, principal=self.buyer, request_id=request.id, quote_id=cheaper.id)
        approve_request(self.db, principal=self.buyer, request_id=request.id)
        return request

    def create_validated(self, *, with_document: bool = True):
        request = self.create_approved()
        validate_request(self.db, principal=self.director, request_id=request.id)
        if with_document:
            add_document(
                self.db,
                principal=self.accountant,
                request_id=request.id,
                document_type='INVOICE',
                name='Invoice 42',
                file_url='/uploads/invoice-42.pdf',
            )
        return request
