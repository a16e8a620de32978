from __future__ import annotations

import threading
import unittest
import uuid
from decimal import Decimal

from sqlalchemy import select

from office_app.models import (
    CollectionStatus,
    GreenScholarTransaction,
    GreenScholarTransactionType,
    RoleName,
    WalletTransaction,
)
from office_app.services.green_scholar_service import pet_weight_kg, record_pet_contribution
from support import HarnessTestCase

RATE = Decimal('1.50')


class PetContributionServiceTests(HarnessTestCase, unittest.TestCase):
    def setUp(self) -> None:
        super().setUp()
        self.pet = self.harness.create_material('PET Bottles')
        self.glass = self.harness.create_material('Glass')

    def _contributions(self) -> list[GreenScholarTransaction]:
        with self.harness.session() as db:
            return db.execute(select(GreenScholarTransaction)).scalars().all()

    def test_second_call_is_a_no_op(self) -> None:
        collection_id = self.harness.create_collection(lines=[(self.pet, '10'), (self.glass, '4')])

        with self.harness.session() as db:
            first = record_pet_contribution(db, collection_id=collection_id, rate_per_kg=RATE)
            db.commit()
        with self.harness.session() as db:
            second = record_pet_contribution(db, collection_id=collection_id, rate_per_kg=RATE)
            db.commit()

        self.assertTrue(first.created)
        self.assertEqual(first.amount, Decimal('15.00'))
        self.assertFalse(second.created)
        rows = self._contributions()
        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0].transaction_type, GreenScholarTransactionType.PET_CONTRIBUTION)
        self.assertEqual(rows[0].source_type, 'collection')
        self.assertEqual(rows[0].source_id, collection_id)
        self.assertEqual(rows[0].description, f'PET contribution from collection {collection_id} @ C1.50/kg')

    def test_concurrent_calls_insert_once(self) -> None:
        collection_id = self.harness.create_collection(lines=[(self.pet, '10')])
        barrier = threading.Barrier(4)
        created: list[bool] = []
        errors: list[BaseException] = []
        lock = threading.Lock()

        def contribute() -> None:
            try:
                with self.harness.session() as db:
                    barrier.wait(timeout=5)
                    result = record_pet_contribution(db, collection_id=collection_id, rate_per_kg=RATE)
                    db.commit()
                with lock:
                    created.append(result.created)
            except Exception as exc:
                with lock:
                    errors.append(exc)

        threads = [threading.Thread(target=contribute) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)

        self.assertEqual(errors, [])
        self.assertEqual(sorted(created), [False, False, False, True])
        self.assertEqual(len(self._contributions()), 1)

    def test_amount_rounds_half_up_to_cents(self) -> None:
        collection_id = self.harness.create_collection(lines=[(self.pet, '3.333')])

        with self.harness.session() as db:
            result = record_pet_contribution(db, collection_id=collection_id, rate_per_kg=RATE)
            db.commit()

        self.assertEqual(result.amount, Decimal('5.00'))

    def test_no_pet_weight_creates_nothing(self) -> None:
        collection_id = self.harness.create_collection(lines=[(self.glass, '8')])

        with self.harness.session() as db:
            result = record_pet_contribution(db, collection_id=collection_id, rate_per_kg=RATE)

        self.assertFalse(result.created)
        self.assertEqual(result.amount, Decimal('0'))
        self.assertEqual(self._contributions(), [])

    def test_material_match_is_a_name_substring(self) -> None:
        # Names are matched by fragment, so "Carpet" counts towards PET weight.
        carpet = self.harness.create_material('Carpet')
        collection_id = self.harness.create_collection(lines=[(self.pet, '2'), (carpet, '1.5'), (self.glass, '3')])

        with self.harness.session() as db:
            self.assertEqual(pet_weight_kg(db, collection_id=collection_id), Decimal('3.5'))


class GreenScholarApiTests(HarnessTestCase, unittest.TestCase):
    def setUp(self) -> None:
        super().setUp()
        self.admin_id = self.harness.login_as(RoleName.ADMIN)
        self.pet = self.harness.create_material('PET Bottles')

    def test_contribution_endpoint_reports_creation(self) -> None:
        collection_id = self.harness.create_collection(lines=[(self.pet, '2')])

        first = self.harness.post('/api/green-scholar/pet-bottles-contribution', {'collectionId': str(collection_id)})
        second = self.harness.post('/api/green-scholar/pet-bottles-contribution', {'collectionId': str(collection_id)})

        self.assertEqual(first.status_code, 200)
        self.assertEqual(first.json(), {'ok': True, 'created': True, 'amount': 3.0})
        self.assertEqual(second.json(), {'ok': True, 'created': False, 'amount': 3.0})

    def test_contribution_requires_collection_id(self) -> None:
        response = self.harness.post('/api/green-scholar/pet-bottles-contribution', {})

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['error'], 'collectionId required')

    def test_fund_balance(self) -> None:
        with self.harness.session() as db:
            db.add_all(
                [
                    GreenScholarTransaction(
                        transaction_type=GreenScholarTransactionType.PET_CONTRIBUTION,
                        amount=Decimal('30.00'),
                        source_type='collection',
                        source_id=uuid.uuid4(),
                    ),
                    GreenScholarTransaction(transaction_type=GreenScholarTransactionType.DONATION, amount=Decimal('20.00')),
                    GreenScholarTransaction(transaction_type=GreenScholarTransactionType.DISTRIBUTION, amount=Decimal('15.00')),
                    GreenScholarTransaction(transaction_type=GreenScholarTransactionType.EXPENSE, amount=Decimal('5.00')),
                ]
            )
            db.commit()

        response = self.harness.client.get('/api/green-scholar/fund')

        self.assertEqual(response.status_code, 200)
        self.assertEqual(
            response.json(),
            {'petContributions': 30.0, 'donations': 20.0, 'distributions': 15.0, 'expenses': 5.0, 'balance': 30.0},
        )

    def test_scholar_summary(self) -> None:
        scholar_id = self.harness.create_user(email='scholar@example.com', full_name='Scholar')
        self.harness.create_collection(customer_id=scholar_id, status=CollectionStatus.APPROVED, lines=[(self.pet, '4')])
        self.harness.create_collection(customer_id=scholar_id, status=CollectionStatus.REJECTED, lines=[(self.pet, '9')])
        with self.harness.session() as db:
            db.add(WalletTransaction(user_id=scholar_id, points=40, transaction_type='collection'))
            db.add(
                GreenScholarTransaction(
                    transaction_type=GreenScholarTransactionType.DISTRIBUTION,
                    amount=Decimal('12.50'),
                    beneficiary_id=scholar_id,
                )
            )
            db.commit()

        response = self.harness.client.get(f'/api/green-scholar/{scholar_id}/summary')

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body['totalRecycledKg'], 4.0)
        self.assertEqual(body['points'], 40)
        self.assertEqual(body['fundsReceived'], 12.5)

    def test_unknown_scholar(self) -> None:
        response = self.harness.client.get(f'/api/green-scholar/{uuid.uuid4()}/summary')

        self.assertEqual(response.status_code, 404)


if __name__ == '__main__':
    unittest.main()
