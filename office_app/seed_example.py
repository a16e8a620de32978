import os
from decimal import Decimal

from sqlalchemy import func, select

from office_app.config import get_settings
from office_app.db import build_service_clients
from office_app.models import Base, Material, RoleName, User, UserStatus
from office_app.security.passwords import hash_password
from office_app.services.role_service import ensure_role_catalog

DEFAULT_MATERIALS = {
    'PET Bottles': Decimal('1.50'),
    'Plastic': Decimal('1.00'),
    'Glass': Decimal('0.50'),
}


def seed() -> None:
    clients = build_service_clients(get_settings())
    Base.metadata.create_all(clients.privileged.kw['bind'])

    with clients.privileged() as db:
        catalog = ensure_role_catalog(db)

        admin_email = os.environ.get('SEED_ADMIN_EMAIL', 'superadmin@example.com').strip().lower()
        admin = db.execute(select(User).where(func.lower(User.email) == admin_email)).scalar_one_or_none()
        if not admin:
            db.add(
                User(
                    email=admin_email,
                    full_name='Super Admin',
                    role_id=catalog[RoleName.SUPER_ADMIN].id,
                    status=UserStatus.ACTIVE,
                    is_approved=True,
                    password_hash=hash_password(os.environ.get('SEED_ADMIN_PASSWORD', 'superadminpass')),
                    must_change_password=True,
                )
            )

        existing = set(db.execute(select(Material.name)).scalars().all())
        for name, unit_price in DEFAULT_MATERIALS.items():
            if name not in existing:
                db.add(Material(name=name, unit_price=unit_price, is_active=True))

        db.commit()
    clients.dispose()


if __name__ == '__main__':
    seed()
    print('Seed data inserted/verified.')
