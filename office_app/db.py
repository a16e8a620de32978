from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from office_app.config import Settings


@dataclass(frozen=True)
class ServiceClients:
    """Process-wide handles to the database, built once at startup.

    ``privileged`` sessions run with the service role and bypass row-level
    security. ``restricted`` sessions are bound to a role that is subject to
    it and are used for user-facing reads.
    """

    privileged: sessionmaker[Session]
    restricted: sessionmaker[Session]

    def dispose(self) -> None:
        self.privileged.kw['bind'].dispose()
        restricted_bind = self.restricted.kw['bind']
        if restricted_bind is not self.privileged.kw['bind']:
            restricted_bind.dispose()


def _make_engine(url: str) -> Engine:
    if url.startswith('sqlite'):
        return create_engine(url, connect_args={'check_same_thread': False})
    return create_engine(url, pool_pre_ping=True)


def build_service_clients(settings: Settings) -> ServiceClients:
    privileged_engine = _make_engine(settings.database_url_normalized)
    if settings.restricted_database_url_normalized == settings.database_url_normalized:
        restricted_engine = privileged_engine
    else:
        restricted_engine = _make_engine(settings.restricted_database_url_normalized)
    return ServiceClients(
        privileged=sessionmaker(bind=privileged_engine, autoflush=False, expire_on_commit=False),
        restricted=sessionmaker(bind=restricted_engine, autoflush=False, expire_on_commit=False),
    )
