from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.responses import PlainTextResponse

from office_app.config import Settings, get_settings
from office_app.db import ServiceClients, build_service_clients
from office_app.errors import install_exception_handlers
from office_app.logging_config import configure_logging
from office_app.routers import admin, auth, green_scholar
from office_app.security.csrf import install_csrf_cookie_middleware
from office_app.security.headers import install_security_headers
from office_app.security.sessions import install_auth_session_middleware


def create_app(settings: Settings | None = None, clients: ServiceClients | None = None) -> FastAPI:
    """Build the API. Run with ``uvicorn office_app.main:create_app --factory``."""
    settings = settings or get_settings()
    logger = configure_logging(settings.log_level, settings.log_json)
    clients = clients or build_service_clients(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info('office app started')
        yield
        app.state.clients.dispose()

    app = FastAPI(title='Office App', lifespan=lifespan)
    app.state.settings = settings
    app.state.clients = clients

    install_exception_handlers(app)
    install_security_headers(app)
    install_csrf_cookie_middleware(app, settings)
    install_auth_session_middleware(app, settings)

    app.include_router(auth.router)
    app.include_router(admin.router)
    app.include_router(green_scholar.router)

    @app.get('/api/health')
    def health():
        return {'ok': True}

    @app.get('/robots.txt', response_class=PlainTextResponse)
    def robots_txt() -> str:
        return 'User-agent: *\nDisallow: /\n'

    return app
