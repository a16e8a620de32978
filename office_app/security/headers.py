from fastapi import FastAPI, Request
from starlette.responses import Response


DEFAULT_HEADERS = {
    'X-Robots-Tag': 'noindex, nofollow, noarchive',
    'X-Content-Type-Options': 'nosniff',
    'Referrer-Policy': 'same-origin',
}
# Admin responses are private unless a handler opts into shared caching.
DEFAULT_CACHE_CONTROL = 'no-store'


def install_security_headers(app: FastAPI) -> None:
    @app.middleware('http')
    async def add_security_headers(request: Request, call_next):
        response: Response = await call_next(request)
        for name, value in DEFAULT_HEADERS.items():
            response.headers[name] = value
        if 'cache-control' not in response.headers:
            response.headers['Cache-Control'] = DEFAULT_CACHE_CONTROL
        return response
