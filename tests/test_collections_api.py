from __future__ import annotations

import unittest
import uuid
from decimal import Decimal
from unittest.mock import patch

from sqlalchemy import select

from office_app.models import (
    Collection,
    CollectionMaterial,
    CollectionStatus,
    DeletedTransaction,
    GreenScholarTransaction,
    RoleName,
    WalletTransaction,
)
from support import HarnessTestCase


class CollectionReviewTests(HarnessTestCase, unittest.TestCase):
    def setUp(self) -> None:
        super().setUp()
        self.harness.login_as(RoleName.ADMIN)
        self.pet = self.harness.create_material('PET Bottles')

    def test_approval_records_pet_contribution(self) -> None:
        collection_id = self.harness.create_collection(lines=[(self.pet, '4')])

        response = self.harness.patch(
            f'/api/admin/collections/{collection_id}',
            {'status': 'approved', 'admin_notes': 'weighed'},
        )

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertTrue(body['success'])
        self.assertEqual(body['collection']['status'], 'approved')
        self.assertEqual(body['collection']['admin_notes'], 'weighed')
        with self.harness.session() as db:
            contributions = db.execute(select(GreenScholarTransaction)).scalars().all()
        self.assertEqual([row.amount for row in contributions], [Decimal('6.00')])

    @patch('office_app.routers.admin.record_pet_contribution')
    def test_contribution_failure_does_not_fail_approval(self, record_mock) -> None:
        record_mock.side_effect = RuntimeError('fund ledger unavailable')
        collection_id = self.harness.create_collection(lines=[(self.pet, '4')])

        with self.assertLogs('office_app.routers.admin', level='WARNING'):
            response = self.harness.patch(f'/api/admin/collections/{collection_id}', {'status': 'approved'})

        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.json()['success'])
        record_mock.assert_called_once()
        with self.harness.session() as db:
            self.assertEqual(db.get(Collection, collection_id).status, CollectionStatus.APPROVED)

    @patch('office_app.routers.admin.record_pet_contribution')
    def test_rejection_skips_contribution(self, record_mock) -> None:
        collection_id = self.harness.create_collection(lines=[(self.pet, '4')])

        response = self.harness.patch(f'/api/admin/collections/{collection_id}', {'status': 'rejected'})

        self.assertEqual(response.status_code, 200)
        record_mock.assert_not_called()

    def test_invalid_status(self) -> None:
        collection_id = self.harness.create_collection()

        for status in ('completed', 'shipped', None):
            response = self.harness.patch(f'/api/admin/collections/{collection_id}', {'status': status})
            self.assertEqual(response.status_code, 400)
            self.assertEqual(response.json()['error'], 'Invalid status')

    def test_missing_collection(self) -> None:
        response = self.harness.patch(f'/api/admin/collections/{uuid.uuid4()}', {'status': 'approved'})

        self.assertEqual(response.status_code, 404)


class SoftDeleteTests(HarnessTestCase, unittest.TestCase):
    def setUp(self) -> None:
        super().setUp()
        self.admin_id = self.harness.login_as(RoleName.SUPER_ADMIN)
        self.pet = self.harness.create_material('PET Bottles')
        self.glass = self.harness.create_material('Glass')
        self.customer_id = self.harness.create_user(email='customer@example.com')

    def test_delete_archives_and_removes_dependents(self) -> None:
        collection_id = self.harness.create_collection(
            customer_id=self.customer_id,
            status=CollectionStatus.APPROVED,
            lines=[(self.pet, '4'), (self.glass, '2')],
        )
        other_id = self.harness.create_collection(lines=[(self.glass, '1')])
        self.harness.post('/api/green-scholar/pet-bottles-contribution', {'collectionId': str(collection_id)})
        with self.harness.session() as db:
            db.add(WalletTransaction(user_id=self.customer_id, transaction_type='collection', source_id=collection_id))
            db.commit()

        response = self.harness.post(
            '/api/admin/delete-collection',
            {'collectionId': str(collection_id), 'reason': 'duplicate entry'},
        )

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertTrue(body['ok'])
        with self.harness.session() as db:
            self.assertIsNone(db.get(Collection, collection_id))
            self.assertIsNotNone(db.get(Collection, other_id))
            remaining_lines = db.execute(select(CollectionMaterial.collection_id)).scalars().all()
            self.assertEqual(remaining_lines, [other_id])
            self.assertEqual(db.execute(select(WalletTransaction)).scalars().all(), [])
            self.assertEqual(db.execute(select(GreenScholarTransaction)).scalars().all(), [])

            archived = db.get(DeletedTransaction, uuid.UUID(body['deletedTransactionId']))
            self.assertEqual(archived.original_collection_id, collection_id)
            self.assertEqual(archived.deleted_by, self.admin_id)
            self.assertEqual(archived.deletion_reason, 'duplicate entry')
            snapshot = archived.original_data
            self.assertEqual(snapshot['collection']['id'], str(collection_id))
            self.assertEqual(snapshot['collection']['status'], 'approved')
            self.assertEqual(
                set(snapshot['collection']),
                {column.key for column in Collection.__table__.columns},
            )
            self.assertEqual(len(snapshot['materials']), 2)

    def test_restore_recreates_collection_and_lines(self) -> None:
        collection_id = self.harness.create_collection(
            customer_id=self.customer_id,
            lines=[(self.pet, '4'), (self.glass, '2')],
        )
        deleted = self.harness.post('/api/admin/delete-collection', {'collectionId': str(collection_id)})
        deleted_id = deleted.json()['deletedTransactionId']

        listing = self.harness.client.get('/api/admin/deleted-transactions')
        self.assertEqual([row['id'] for row in listing.json()['deletedTransactions']], [deleted_id])
        self.assertEqual(listing.json()['deletedTransactions'][0]['deletion_reason'], 'Deleted by super admin')

        response = self.harness.post(f'/api/admin/deleted-transactions/{deleted_id}/restore')

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['collection']['id'], str(collection_id))
        with self.harness.session() as db:
            restored = db.get(Collection, collection_id)
            self.assertEqual(restored.customer_id, self.customer_id)
            self.assertEqual(restored.status, CollectionStatus.SUBMITTED)
            quantities = sorted(
                db.execute(
                    select(CollectionMaterial.quantity).where(CollectionMaterial.collection_id == collection_id)
                ).scalars().all()
            )
            self.assertEqual(quantities, [Decimal('2'), Decimal('4')])
            self.assertIsNone(db.get(DeletedTransaction, uuid.UUID(deleted_id)))

    def test_delete_missing_collection(self) -> None:
        response = self.harness.post('/api/admin/delete-collection', {'collectionId': str(uuid.uuid4())})

        self.assertEqual(response.status_code, 404)

    def test_admin_cannot_delete(self) -> None:
        collection_id = self.harness.create_collection()
        self.harness.login_as(RoleName.ADMIN)

        response = self.harness.post('/api/admin/delete-collection', {'collectionId': str(collection_id)})

        self.assertEqual(response.status_code, 403)


if __name__ == '__main__':
    unittest.main()
