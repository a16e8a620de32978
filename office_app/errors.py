"""
JSON error bodies for the admin API.

Every failure leaves the service as ``{"success": false, "error": "..."}``
so the dashboard can read one field regardless of status code.
"""

import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


def error_body(message: str, **extra) -> dict:
    return {'success': False, 'error': message, **extra}


def _validation_message(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return 'Invalid request'
    first = errors[0]
    location = '.'.join(str(part) for part in first.get('loc', ()) if part != 'body')
    if first.get('type') == 'missing' and location:
        return f'{location} required'
    if location:
        return f'Invalid {location}: {first.get("msg", "invalid value")}'
    return first.get('msg', 'Invalid request')


def install_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(StarletteHTTPException)
    async def handle_http_exception(request: Request, exc: StarletteHTTPException):
        return JSONResponse(error_body(str(exc.detail)), status_code=exc.status_code, headers=exc.headers)

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError):
        logger.info('request validation failed', extra={'path': request.url.path})
        return JSONResponse(
            error_body(_validation_message(exc), details=jsonable_errors(exc)),
            status_code=status.HTTP_400_BAD_REQUEST,
        )

    @app.exception_handler(SQLAlchemyError)
    async def handle_database_error(request: Request, exc: SQLAlchemyError):
        logger.error('database error', exc_info=exc, extra={'path': request.url.path})
        return JSONResponse(error_body('Database error'), status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    return [
        {'loc': [str(part) for part in err.get('loc', ())], 'msg': err.get('msg'), 'type': err.get('type')}
        for err in exc.errors()
    ]
