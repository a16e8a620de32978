from __future__ import annotations

import asyncio
import time
import unittest
from decimal import Decimal
from unittest.mock import patch

from office_app.models import CollectionStatus, PointsTransaction, RoleName, WalletTransaction
from office_app.services import listing_service
from office_app.services.listing_service import QUERY_TIMEOUT_ERROR, Slice, fan_out
from support import HarnessTestCase


def _slow_slice(db):
    time.sleep(0.5)
    return {'late': True}


class FanOutTests(HarnessTestCase, unittest.TestCase):
    def test_failed_slice_gets_empty_value(self) -> None:
        def boom(db):
            raise RuntimeError('relation does not exist')

        result = asyncio.run(
            fan_out(
                self.harness.clients.privileged,
                [Slice('ok', lambda db: [1, 2]), Slice('broken', boom), Slice('count', boom, empty=lambda: 0)],
                timeout=5,
            )
        )

        self.assertIsNone(result.error)
        self.assertEqual(result.values, {'ok': [1, 2], 'broken': [], 'count': 0})
        self.assertEqual(set(result.failures), {'broken', 'count'})

    def test_timeout_empties_every_slice(self) -> None:
        result = asyncio.run(
            fan_out(
                self.harness.clients.privileged,
                [Slice('fast', lambda db: [1]), Slice('slow', _slow_slice, empty=lambda: None)],
                timeout=0.05,
            )
        )

        self.assertEqual(result.error, QUERY_TIMEOUT_ERROR)
        self.assertEqual(result.values, {'fast': [], 'slow': None})


class AnalyticsApiTests(HarnessTestCase, unittest.TestCase):
    def setUp(self) -> None:
        super().setUp()
        self.harness.login_as(RoleName.ADMIN)

    def test_analytics_shape_and_cache_header(self) -> None:
        customer_id = self.harness.create_user(email='customer@example.com', full_name='Customer')
        pet = self.harness.create_material('PET Bottles')
        self.harness.create_collection(customer_id=customer_id, status=CollectionStatus.APPROVED, lines=[(pet, '5')])
        self.harness.create_collection(customer_id=customer_id, status=CollectionStatus.PENDING, lines=[(pet, '2')])

        response = self.harness.client.get('/api/admin/analytics')

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.headers['cache-control'], 'public, s-maxage=30, stale-while-revalidate=60')
        body = response.json()
        self.assertNotIn('error', body)
        self.assertEqual(body['systemImpact']['total_collections'], 2)
        self.assertEqual(body['systemImpact']['approved_collections'], 1)
        self.assertEqual(body['systemImpact']['pending_collections'], 1)
        self.assertEqual(body['systemImpact']['total_weight_kg'], 5.0)
        self.assertEqual([row['material_name'] for row in body['materialPerformance']], ['PET Bottles'])
        self.assertEqual([row['name'] for row in body['customerPerformance']], ['Customer'])
        self.assertEqual(body['collectorPerformance'], [])
        self.assertEqual(body['activeUsersCount'], 2)

    def test_failing_slice_keeps_the_rest(self) -> None:
        def broken(db, *, limit):
            raise RuntimeError('missing view')

        with patch.object(listing_service, 'material_performance', broken):
            response = self.harness.client.get('/api/admin/analytics')

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body['materialPerformance'], [])
        self.assertEqual(body['activeUsersCount'], 1)
        self.assertEqual(response.headers['cache-control'], 'no-store')


class AnalyticsTimeoutTests(HarnessTestCase, unittest.TestCase):
    harness_overrides = {'query_timeout_seconds': 0.1}

    def setUp(self) -> None:
        super().setUp()
        self.harness.login_as(RoleName.ADMIN)

    @patch('office_app.services.listing_service.system_impact', _slow_slice)
    def test_timeout_degrades_to_empty_payload(self) -> None:
        response = self.harness.client.get('/api/admin/analytics')

        self.assertEqual(response.status_code, 200)
        self.assertEqual(
            response.json(),
            {
                'systemImpact': None,
                'materialPerformance': [],
                'collectorPerformance': [],
                'customerPerformance': [],
                'activeUsersCount': 0,
                'error': QUERY_TIMEOUT_ERROR,
            },
        )
        self.assertEqual(response.headers['cache-control'], 'no-store')


class PickupsAndTransactionsApiTests(HarnessTestCase, unittest.TestCase):
    def setUp(self) -> None:
        super().setUp()
        self.harness.login_as(RoleName.ADMIN)

    def test_pickups_include_people_and_filter_by_status(self) -> None:
        customer_id = self.harness.create_user(email='c@example.com', full_name='Casey')
        self.harness.create_collection(customer_id=customer_id, status=CollectionStatus.SUBMITTED)
        self.harness.create_collection(customer_id=customer_id, status=CollectionStatus.APPROVED)

        everything = self.harness.client.get('/api/admin/pickups')
        submitted = self.harness.client.get('/api/admin/pickups', params={'status': 'submitted'})

        self.assertEqual(everything.status_code, 200)
        self.assertEqual(everything.json()['count'], 2)
        self.assertEqual(everything.headers['cache-control'], 'public, s-maxage=20, stale-while-revalidate=40')
        self.assertEqual(submitted.json()['count'], 1)
        pickup = submitted.json()['pickups'][0]
        self.assertEqual(pickup['status'], 'submitted')
        self.assertEqual(pickup['customer_name'], 'Casey')
        self.assertEqual(pickup['customer_email'], 'c@example.com')
        self.assertIsNone(pickup['collector_name'])

    def test_pickups_reject_unknown_status(self) -> None:
        response = self.harness.client.get('/api/admin/pickups', params={'status': 'lost'})

        self.assertEqual(response.status_code, 400)

    def test_pickups_failure_returns_empty_list(self) -> None:
        def broken(db, *, status, limit):
            raise RuntimeError('permission denied for table')

        with patch.object(listing_service, 'list_pickups', broken):
            response = self.harness.client.get('/api/admin/pickups')

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {'pickups': [], 'count': 0, 'error': 'permission denied for table'})

    def test_transactions_combine_both_ledgers(self) -> None:
        user_id = self.harness.create_user(email='u@example.com')
        with self.harness.session() as db:
            db.add(PointsTransaction(user_id=user_id, points=10, transaction_type='earned'))
            db.add(WalletTransaction(user_id=user_id, amount=Decimal('7.50'), transaction_type='collection'))
            db.add(WalletTransaction(user_id=user_id, amount=Decimal('-2.00'), transaction_type='withdrawal'))
            db.commit()

        response = self.harness.client.get('/api/admin/transactions')

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body['count'], 3)
        self.assertEqual(len(body['pointsTransactions']), 1)
        self.assertEqual(sorted(row['amount'] for row in body['monetaryTransactions']), [-2.0, 7.5])
        self.assertEqual(response.headers['cache-control'], 'public, s-maxage=20, stale-while-revalidate=40')

    def test_transactions_with_failed_ledger_are_not_cached(self) -> None:
        def broken(db, *, limit):
            raise RuntimeError('relation "wallet_transactions" does not exist')

        with patch.object(listing_service, 'list_monetary_transactions', broken):
            response = self.harness.client.get('/api/admin/transactions')

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['monetaryTransactions'], [])
        self.assertEqual(response.headers['cache-control'], 'no-store')


if __name__ == '__main__':
    unittest.main()
