from __future__ import annotations

import unittest
from decimal import Decimal

from sqlalchemy import func, select

from app.models import AuditLog, PurchaseItem, PurchaseRequest, RequestStatus
from app.services.errors import Forbidden, InvalidState, NotFound, Unauthenticated, ValidationError
from app.services.notification_service import NotificationOutbox
from app.services.purchase_request_service import (
    create_purchase_request,
    delete_purchase_request,
    get_available_actions,
    get_purchase_request_detail,
    list_purchase_requests,
    submit_purchase_request,
    update_purchase_request,
)
from tests.support import WorkflowTestCase


class CreatePurchaseRequestTests(WorkflowTestCase):
    def test_create_computes_total_and_starts_as_draft(self) -> None:
        request = create_purchase_request(
            self.db,
            principal=self.requester,
            title='Laptops',
            items=[
                {'name': 'Laptop', 'quantity': 2, 'estimated_price': '500000'},
                {'name': 'Mouse', 'quantity': 3, 'estimated_price': '2500.50'},
            ],
        )

        self.assertEqual(request.status, RequestStatus.DRAFT)
        self.assertEqual(request.total_estimated, Decimal('1007501.50'))
        self.assertEqual(request.department_id, self.department.id)
        self.assertEqual(request.user_id, self.requester.id)
        self.assertRegex(request.reference, r'^DA-\d{6}-[A-Z0-9]{6}$')
        items = self.db.execute(
            select(func.count(PurchaseItem.id)).where(PurchaseItem.purchase_request_id == request.id)
        ).scalar_one()
        self.assertEqual(items, 2)

    def test_create_writes_audit_entry(self) -> None:
        request = self.create_draft()
        self.db.flush()
        entry = self.db.execute(
            select(AuditLog).where(AuditLog.entity_type == 'PurchaseRequest', AuditLog.entity_id == request.id)
        ).scalar_one()
        self.assertEqual(entry.action, 'CREATE')
        self.assertEqual(entry.actor_id, self.requester.id)
        self.assertEqual(entry.meta['reference'], request.reference)

    def test_create_requires_principal(self) -> None:
        with self.assertRaises(Unauthenticated):
            create_purchase_request(self.db, principal=None, title='Laptops', items=[])

    def test_create_is_reserved_to_requesters(self) -> None:
        with self.assertRaises(Forbidden):
            create_purchase_request(
                self.db,
                principal=self.buyer,
                title='Laptops',
                items=[{'name': 'Laptop', 'quantity': 1, 'estimated_price': '10'}],
            )

    def test_create_requires_department(self) -> None:
        self.requester.department_id = None
        with self.assertRaises(Forbidden):
            self.create_draft()

    def test_create_rejects_bad_payloads(self) -> None:
        bad_payloads = [
            {'title': 'Laptops', 'items': []},
            {'title': 'PC', 'items': [{'name': 'Laptop', 'quantity': 1, 'estimated_price': '1'}]},
            {'title': 'Laptops', 'items': [{'name': 'Laptop', 'quantity': 0, 'estimated_price': '1'}]},
            {'title': 'Laptops', 'items': [{'name': 'Laptop', 'quantity': 1, 'estimated_price': '-1'}]},
            {'title': 'Laptops', 'items': [{'name': 'L', 'quantity': 1, 'estimated_price': '1'}]},
        ]
        for payload in bad_payloads:
            with self.subTest(payload=payload):
                with self.assertRaises(ValidationError):
                    create_purchase_request(self.db, principal=self.requester, **payload)

        count = self.db.execute(select(func.count(PurchaseRequest.id))).scalar_one()
        self.assertEqual(count, 0)

    def test_total_matches_stored_items(self) -> None:
        request = self.create_draft(quantity=3, price='0.35')

        stored = self.db.execute(
            select(PurchaseItem.quantity, PurchaseItem.estimated_price).where(
                PurchaseItem.purchase_request_id == request.id
            )
        ).all()
        self.assertEqual(request.total_estimated, Decimal('1.05'))
        self.assertEqual(request.total_estimated, sum(quantity * price for quantity, price in stored))

    def test_sub_cent_prices_are_rejected(self) -> None:
        with self.assertRaises(ValidationError) as ctx:
            self.create_draft(quantity=1000, price='0.004')

        self.assertIn('items.0.estimated_price', ctx.exception.fields)
        count = self.db.execute(select(func.count(PurchaseRequest.id))).scalar_one()
        self.assertEqual(count, 0)


class UpdatePurchaseRequestTests(WorkflowTestCase):
    def test_update_replaces_items_and_recomputes_total(self) -> None:
        request = self.create_draft()

        update_purchase_request(
            self.db,
            principal=self.requester,
            request_id=request.id,
            title='Office chairs',
            items=[{'name': 'Chair', 'quantity': 4, 'estimated_price': '75000'}],
        )

        self.assertEqual(request.title, 'Office chairs')
        self.assertEqual(request.total_estimated, Decimal('300000.00'))
        names = self.db.execute(
            select(PurchaseItem.name).where(PurchaseItem.purchase_request_id == request.id)
        ).scalars().all()
        self.assertEqual(names, ['Chair'])

    def test_update_by_other_user_is_forbidden(self) -> None:
        request = self.create_draft()
        with self.assertRaises(Forbidden):
            update_purchase_request(
                self.db,
                principal=self.other_requester,
                request_id=request.id,
                title='Hijacked',
                items=[{'name': 'Chair', 'quantity': 1, 'estimated_price': '1'}],
            )

    def test_update_after_submit_is_invalid_state(self) -> None:
        request = self.create_pending()
        with self.assertRaises(InvalidState) as ctx:
            update_purchase_request(
                self.db,
                principal=self.requester,
                request_id=request.id,
                title='Too late',
                items=[{'name': 'Chair', 'quantity': 1, 'estimated_price': '1'}],
            )
        self.assertEqual(ctx.exception.context['status'], 'PENDING')
        self.assertEqual(ctx.exception.context['expected'], ['DRAFT'])

    def test_update_unknown_request_is_not_found(self) -> None:
        with self.assertRaises(NotFound):
            update_purchase_request(
                self.db,
                principal=self.requester,
                request_id=999,
                title='Missing',
                items=[{'name': 'Chair', 'quantity': 1, 'estimated_price': '1'}],
            )


class SubmitAndDeleteTests(WorkflowTestCase):
    def test_submit_moves_to_pending_and_notifies_purchasing(self) -> None:
        request = self.create_draft()
        outbox = NotificationOutbox()

        submit_purchase_request(self.db, principal=self.requester, request_id=request.id, outbox=outbox)

        self.assertEqual(request.status, RequestStatus.PENDING)
        self.assertEqual(len(outbox.pending), 1)
        self.assertEqual(outbox.pending[0].template, 'purchase_submitted')
        self.assertEqual(outbox.pending[0].recipients, ['buyer@example.com'])
        self.assertEqual(outbox.pending[0].context['department'], 'Information Technology')

    def test_submit_twice_is_invalid_state(self) -> None:
        request = self.create_pending()
        with self.assertRaises(InvalidState):
            submit_purchase_request(self.db, principal=self.requester, request_id=request.id)

    def test_submit_without_items_is_invalid_state(self) -> None:
        request = self.create_draft()
        self.db.query(PurchaseItem).filter(PurchaseItem.purchase_request_id == request.id).delete()
        with self.assertRaises(InvalidState):
            submit_purchase_request(self.db, principal=self.requester, request_id=request.id)

    def test_submit_by_other_user_is_forbidden(self) -> None:
        request = self.create_draft()
        with self.assertRaises(Forbidden):
            submit_purchase_request(self.db, principal=self.other_requester, request_id=request.id)

    def test_delete_draft_removes_request_and_items(self) -> None:
        request = self.create_draft()
        request_id = request.id

        delete_purchase_request(self.db, principal=self.requester, request_id=request_id)

        self.assertIsNone(self.db.get(PurchaseRequest, request_id))
        items = self.db.execute(
            select(func.count(PurchaseItem.id)).where(PurchaseItem.purchase_request_id == request_id)
        ).scalar_one()
        self.assertEqual(items, 0)

    def test_delete_after_submit_is_invalid_state(self) -> None:
        request = self.create_pending()
        with self.assertRaises(InvalidState):
            delete_purchase_request(self.db, principal=self.requester, request_id=request.id)


class ReadTests(WorkflowTestCase):
    def test_requester_lists_only_own_requests(self) -> None:
        mine = self.create_draft(title='Mine')
        create_purchase_request(
            self.db,
            principal=self.other_requester,
            title='Not mine',
            items=[{'name': 'Desk', 'quantity': 1, 'estimated_price': '100'}],
        )

        own = list_purchase_requests(self.db, principal=self.requester)
        everything = list_purchase_requests(self.db, principal=self.buyer)

        self.assertEqual([row['id'] for row in own], [mine.id])
        self.assertEqual(len(everything), 2)

    def test_list_filters_by_status(self) -> None:
        self.create_draft()
        pending = self.create_pending()

        rows = list_purchase_requests(self.db, principal=self.director, status=RequestStatus.PENDING)

        self.assertEqual([row['id'] for row in rows], [pending.id])
        self.assertEqual(rows[0]['status'], 'PENDING')

    def test_detail_reports_cheapest_quote_and_checklist(self) -> None:
        request = self.create_pending()
        expensive, cheap = self.add_quotes(request, '980000', '950000')

        detail = get_purchase_request_detail(self.db, principal=self.buyer, request_id=request.id)

        self.assertEqual(detail['cheapest_quote_id'], cheap.id)
        self.assertEqual(
            detail['approval_checklist'],
            {'quotes_count': 2, 'quotes_required': 2, 'has_selected_quote': False},
        )
        self.assertIn('approve', detail['available_actions'])
        self.assertEqual(len(detail['items']), 1)

    def test_detail_of_someone_elses_request_is_forbidden_for_requesters(self) -> None:
        request = self.create_draft()
        with self.assertRaises(Forbidden):
            get_purchase_request_detail(self.db, principal=self.other_requester, request_id=request.id)

    def test_available_actions_follow_role_and_status(self) -> None:
        draft = self.create_draft()
        self.assertEqual(get_available_actions(self.requester, draft), ['edit', 'submit', 'delete'])
        self.assertEqual(get_available_actions(self.other_requester, draft), [])

        approved = self.create_approved()
        self.assertEqual(get_available_actions(self.director, approved), ['validate', 'reject'])
        self.assertEqual(get_available_actions(self.buyer, approved), [])


if __name__ == '__main__':
    unittest.main()
