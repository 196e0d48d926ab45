from __future__ import annotations

import unittest
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import select

from app.models import InternalApproval, InternalCategory, InternalDocument, InternalStatus
from app.services.errors import Forbidden, InvalidState, ValidationError
from app.services.internal_request_service import (
    add_internal_document,
    approve_internal_request,
    create_internal_request,
    delete_internal_document,
    finalize_internal_request,
    get_internal_request_detail,
    list_internal_requests,
    reject_internal_request,
)
from app.services.notification_service import NotificationOutbox
from tests.support import WorkflowTestCase

MARCH_2026 = datetime(2026, 3, 1, 9, 30, tzinfo=timezone.utc)


class InternalRequestTests(WorkflowTestCase):
    def create(self, **overrides):
        values = {
            'title': 'Office internet',
            'category': 'INTERNET',
            'amount': '45000',
            'now': MARCH_2026,
        }
        values.update(overrides)
        return create_internal_request(self.db, principal=self.buyer, **values)

    def test_create_assigns_yearly_sequence_and_notifies_director(self) -> None:
        outbox = NotificationOutbox()
        first = self.create(outbox=outbox)
        second = self.create(title='Electricity bill', category='ELECTRICITY')

        self.assertEqual(first.reference, 'INT-2026-0001')
        self.assertEqual(second.reference, 'INT-2026-0002')
        self.assertEqual(first.status, InternalStatus.PENDING)
        self.assertEqual(first.category, InternalCategory.INTERNET)
        self.assertEqual(first.amount, Decimal('45000'))
        self.assertEqual(outbox.pending[0].template, 'internal_created')
        self.assertEqual(outbox.pending[0].recipients, ['director@example.com'])

    def test_only_purchasing_creates(self) -> None:
        for principal in (self.requester, self.director, self.accountant):
            with self.subTest(role=principal.role):
                with self.assertRaises(Forbidden):
                    create_internal_request(
                        self.db,
                        principal=principal,
                        title='Office internet',
                        category='INTERNET',
                        amount='45000',
                    )

    def test_create_validates_payload(self) -> None:
        cases = [
            {'amount': '0'},
            {'amount': '0.001'},
            {'category': 'TRAVEL'},
            {'title': 'TV'},
        ]
        for case in cases:
            with self.subTest(case=case):
                with self.assertRaises(ValidationError):
                    self.create(**case)

    def test_approve_records_decision_and_notifies_requester(self) -> None:
        request = self.create()
        outbox = NotificationOutbox()

        approve_internal_request(self.db, principal=self.director, request_id=request.id, outbox=outbox)

        self.assertEqual(request.status, InternalStatus.APPROVED)
        approval = self.db.execute(
            select(InternalApproval).where(InternalApproval.internal_request_id == request.id)
        ).scalar_one()
        self.assertEqual(approval.user_id, self.director.id)
        self.assertEqual(outbox.pending[0].template, 'internal_approved')
        self.assertEqual(outbox.pending[0].recipients, ['buyer@example.com'])

    def test_reject_needs_ten_characters(self) -> None:
        request = self.create()
        with self.assertRaises(ValidationError):
            reject_internal_request(self.db, principal=self.director, request_id=request.id, comment='too short')

        reject_internal_request(
            self.db,
            principal=self.director,
            request_id=request.id,
            comment='Contract already covers this',
        )
        self.assertEqual(request.status, InternalStatus.REJECTED)

    def test_approve_twice_is_invalid_state(self) -> None:
        request = self.create()
        approve_internal_request(self.db, principal=self.director, request_id=request.id)
        with self.assertRaises(InvalidState):
            approve_internal_request(self.db, principal=self.director, request_id=request.id)

    def test_finalize_needs_approval_but_no_document(self) -> None:
        request = self.create()
        with self.assertRaises(InvalidState):
            finalize_internal_request(self.db, principal=self.buyer, request_id=request.id)

        approve_internal_request(self.db, principal=self.director, request_id=request.id)
        finalize_internal_request(self.db, principal=self.buyer, request_id=request.id)

        self.assertEqual(request.status, InternalStatus.COMPLETED)

    def test_director_cannot_finalize(self) -> None:
        request = self.create()
        approve_internal_request(self.db, principal=self.director, request_id=request.id)
        with self.assertRaises(Forbidden):
            finalize_internal_request(self.db, principal=self.director, request_id=request.id)

    def test_documents_only_while_approved(self) -> None:
        request = self.create()
        with self.assertRaises(InvalidState):
            add_internal_document(
                self.db, principal=self.buyer, request_id=request.id, name='Bill', file_url='/uploads/bill.pdf'
            )

        approve_internal_request(self.db, principal=self.director, request_id=request.id)
        document = add_internal_document(
            self.db, principal=self.buyer, request_id=request.id, name='Bill', file_url='/uploads/bill.pdf'
        )
        finalize_internal_request(self.db, principal=self.buyer, request_id=request.id)

        with self.assertRaises(InvalidState):
            delete_internal_document(self.db, principal=self.buyer, document_id=document.id)
        self.assertIsNotNone(self.db.get(InternalDocument, document.id))

    def test_list_and_detail(self) -> None:
        internet = self.create()
        self.create(title='Coffee beans', category='COFFEE', amount='12000')
        approve_internal_request(self.db, principal=self.director, request_id=internet.id, comment='OK')

        approved = list_internal_requests(self.db, principal=self.accountant, status=InternalStatus.APPROVED)
        coffee = list_internal_requests(self.db, principal=self.director, category=InternalCategory.COFFEE)
        detail = get_internal_request_detail(self.db, principal=self.buyer, request_id=internet.id)

        self.assertEqual([row['id'] for row in approved], [internet.id])
        self.assertEqual([row['title'] for row in coffee], ['Coffee beans'])
        self.assertEqual(detail['approvals'][0]['comment'], 'OK')
        self.assertEqual(detail['available_actions'], ['add_document', 'delete_document', 'finalize'])

    def test_requesters_cannot_see_internal_requests(self) -> None:
        with self.assertRaises(Forbidden):
            list_internal_requests(self.db, principal=self.requester)


if __name__ == '__main__':
    unittest.main()
