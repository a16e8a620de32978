from __future__ import annotations

import os
import tempfile
import uuid
from decimal import Decimal

from fastapi.testclient import TestClient

from office_app.config import Settings
from office_app.db import build_service_clients
from office_app.main import create_app
from office_app.models import Base, Collection, CollectionMaterial, CollectionStatus, Material, RoleName, User, UserStatus
from office_app.security.csrf import CSRF_COOKIE_NAME, CSRF_HEADER_NAME
from office_app.security.passwords import hash_password
from office_app.services.role_service import ensure_role_catalog

DEFAULT_PASSWORD = 'correct-horse-battery'


class AppHarness:
    """A fresh app over a throwaway SQLite file, with the role catalog seeded."""

    def __init__(self, **overrides) -> None:
        self._tmpdir = tempfile.TemporaryDirectory()
        db_path = os.path.join(self._tmpdir.name, 'office.db')
        self.settings = Settings(
            database_url=f'sqlite:///{db_path}',
            log_level='WARNING',
            log_json=False,
            **overrides,
        )
        self.clients = build_service_clients(self.settings)
        Base.metadata.create_all(self.clients.privileged.kw['bind'])
        with self.clients.privileged() as db:
            self.role_ids = {name: role.id for name, role in ensure_role_catalog(db).items()}
            db.commit()
        self.app = create_app(self.settings, self.clients)
        self.client = TestClient(self.app)

    def close(self) -> None:
        self.client.close()
        self.clients.dispose()
        self._tmpdir.cleanup()

    def session(self):
        return self.clients.privileged()

    def create_user(
        self,
        *,
        email: str | None = None,
        role: RoleName = RoleName.RESIDENT,
        status: UserStatus = UserStatus.ACTIVE,
        password: str | None = DEFAULT_PASSWORD,
        must_change_password: bool = False,
        full_name: str = 'Test User',
    ) -> uuid.UUID:
        with self.session() as db:
            user = User(
                email=email,
                full_name=full_name,
                role_id=self.role_ids[role],
                status=status,
                is_approved=status == UserStatus.ACTIVE,
                password_hash=hash_password(password) if password else None,
                must_change_password=must_change_password,
            )
            db.add(user)
            db.commit()
            return user.id

    def create_material(self, name: str, unit_price: str = '1.00') -> int:
        with self.session() as db:
            material = Material(name=name, unit_price=Decimal(unit_price))
            db.add(material)
            db.commit()
            return material.id

    def create_collection(
        self,
        *,
        customer_id: uuid.UUID | None = None,
        status: CollectionStatus = CollectionStatus.SUBMITTED,
        lines: list[tuple[int, str]] | None = None,
    ) -> uuid.UUID:
        with self.session() as db:
            total = sum((Decimal(quantity) for _, quantity in lines or []), Decimal('0'))
            collection = Collection(customer_id=customer_id, status=status, total_weight_kg=total, pickup_address='1 Main Rd')
            db.add(collection)
            db.flush()
            for material_id, quantity in lines or []:
                db.add(CollectionMaterial(collection_id=collection.id, material_id=material_id, quantity=Decimal(quantity)))
            db.commit()
            return collection.id

    def csrf_headers(self) -> dict[str, str]:
        token = self.client.cookies.get(CSRF_COOKIE_NAME)
        if not token:
            self.client.get('/api/health')
            token = self.client.cookies.get(CSRF_COOKIE_NAME)
        return {CSRF_HEADER_NAME: token}

    def login(self, email: str, password: str = DEFAULT_PASSWORD):
        return self.client.post(
            '/api/auth/login',
            json={'email': email, 'password': password},
            headers=self.csrf_headers(),
        )

    def login_as(self, role: RoleName, *, email: str | None = None) -> uuid.UUID:
        email = email or f'{role.value}-{uuid.uuid4().hex[:8]}@example.com'
        user_id = self.create_user(email=email, role=role)
        response = self.login(email)
        if response.status_code != 200:
            raise AssertionError(f'login failed: {response.status_code} {response.text}')
        return user_id

    def post(self, path: str, payload=None):
        return self.client.post(path, json=payload, headers=self.csrf_headers())

    def patch(self, path: str, payload=None):
        return self.client.patch(path, json=payload, headers=self.csrf_headers())

    def delete(self, path: str):
        return self.client.delete(path, headers=self.csrf_headers())


class HarnessTestCase:
    """Mixin giving each test its own harness."""

    harness_overrides: dict = {}

    def setUp(self) -> None:
        super().setUp()
        self.harness = AppHarness(**self.harness_overrides)
        self.addCleanup(self.harness.close)
