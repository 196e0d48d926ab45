from __future__ import annotations

import unittest
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import select

from app.models import Approval, ApprovalAction, Document, InternalStatus, RequestStatus, Role
from app.services.accountant_service import add_document, finalize_request
from app.services.director_service import reject_as_director, validate_request
from app.services.errors import PreconditionFailed, ValidationError
from app.services.internal_request_service import (
    approve_internal_request,
    create_internal_request,
    finalize_internal_request,
)
from app.services.purchase_request_service import create_purchase_request, submit_purchase_request
from app.services.quote_service import add_quote, approve_request, select_quote
from tests.support import WorkflowTestCase, future


class PurchaseRequestScenarioTests(WorkflowTestCase):
    def _laptops_pending(self):
        request = create_purchase_request(
            self.db,
            principal=self.requester,
            title='Laptops',
            items=[{'name': 'Laptop', 'quantity': 2, 'estimated_price': 500000}],
        )
        self.assertEqual(request.total_estimated, Decimal('1000000'))
        self.assertEqual(request.status, RequestStatus.DRAFT)

        submit_purchase_request(self.db, principal=self.requester, request_id=request.id)
        self.assertEqual(request.status, RequestStatus.PENDING)
        return request

    def _quote(self, request, supplier: str, amount: int):
        return add_quote(
            self.db,
            principal=self.buyer,
            request_id=request.id,
            supplier_name=supplier,
            amount=amount,
            valid_until=future(),
        )

    def test_happy_path_to_completed(self) -> None:
        request = self._laptops_pending()
        cheaper = self._quote(request, 'Dakar Computers', 950000)
        self._quote(request, 'Thies Informatique', 980000)

        select_quote(self.db, principal=self.buyer, request_id=request.id, quote_id=cheaper.id)
        self.assertEqual(request.selected_quote_id, cheaper.id)

        approve_request(self.db, principal=self.buyer, request_id=request.id)
        self.assertEqual(request.status, RequestStatus.APPROVED)

        validate_request(self.db, principal=self.director, request_id=request.id)
        self.assertEqual(request.status, RequestStatus.VALIDATED)
        self.assertEqual(request.total_final, Decimal('950000'))

        add_document(
            self.db,
            principal=self.accountant,
            request_id=request.id,
            document_type='INVOICE',
            name='Invoice DC-2026-118',
            file_url='/uploads/dc-2026-118.pdf',
        )
        documents = self.db.execute(select(Document).where(Document.purchase_request_id == request.id)).scalars().all()
        self.assertEqual(len(documents), 1)

        finalize_request(self.db, principal=self.accountant, request_id=request.id)
        self.db.commit()
        self.assertEqual(request.status, RequestStatus.COMPLETED)

        roles = self.db.execute(
            select(Approval.role).where(Approval.purchase_request_id == request.id).order_by(Approval.id.asc())
        ).scalars().all()
        self.assertEqual(roles, [Role.PURCHASING, Role.DIRECTOR, Role.ACCOUNTANT])

    def test_approve_with_single_quote_stays_pending(self) -> None:
        request = self._laptops_pending()
        only = self._quote(request, 'Dakar Computers', 950000)
        select_quote(self.db, principal=self.buyer, request_id=request.id, quote_id=only.id)

        with self.assertRaises(PreconditionFailed) as ctx:
            approve_request(self.db, principal=self.buyer, request_id=request.id)

        self.assertEqual(ctx.exception.context['quotes_count'], 1)
        self.assertEqual(request.status, RequestStatus.PENDING)

    def test_director_rejection_needs_a_real_comment(self) -> None:
        request = self.create_approved()

        with self.assertRaises(ValidationError):
            reject_as_director(self.db, principal=self.director, request_id=request.id, comment='trop cher')
        self.assertEqual(request.status, RequestStatus.APPROVED)

        reject_as_director(
            self.db,
            principal=self.director,
            request_id=request.id,
            comment='Budget dépassé cette année',
        )
        self.assertEqual(request.status, RequestStatus.REJECTED)
        last = self.db.execute(
            select(Approval).where(Approval.purchase_request_id == request.id).order_by(Approval.id.desc())
        ).scalars().first()
        self.assertEqual(last.action, ApprovalAction.REJECT)
        self.assertEqual(last.role, Role.DIRECTOR)
        self.assertEqual(last.comment, 'Budget dépassé cette année')


class InternalRequestScenarioTests(WorkflowTestCase):
    def test_first_internal_request_of_the_year(self) -> None:
        request = create_internal_request(
            self.db,
            principal=self.buyer,
            title='Fiber internet March',
            category='INTERNET',
            amount=45000,
            now=datetime(2026, 3, 2, tzinfo=timezone.utc),
        )
        self.assertEqual(request.reference, 'INT-2026-0001')

        approve_internal_request(self.db, principal=self.director, request_id=request.id)
        self.assertEqual(request.status, InternalStatus.APPROVED)

        finalize_internal_request(self.db, principal=self.buyer, request_id=request.id)
        self.assertEqual(request.status, InternalStatus.COMPLETED)


if __name__ == '__main__':
    unittest.main()
