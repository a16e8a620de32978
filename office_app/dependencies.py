from collections.abc import Iterator

from fastapi import Request
from sqlalchemy.orm import Session

from office_app.config import Settings
from office_app.db import ServiceClients


def get_clients(request: Request) -> ServiceClients:
    return request.app.state.clients


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_db(request: Request) -> Iterator[Session]:
    with request.app.state.clients.privileged() as db:
        yield db


def get_restricted_db(request: Request) -> Iterator[Session]:
    with request.app.state.clients.restricted() as db:
        yield db


def get_client_ip(request: Request) -> str | None:
    forwarded_for = request.headers.get('x-forwarded-for')
    if forwarded_for:
        return forwarded_for.split(',')[0].strip()
    if request.client:
        return request.client.host
    return None
