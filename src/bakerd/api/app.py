"""FastAPI application factory for the read-only HTTP API."""

from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from bakerd import __version__
from bakerd.api import routes
from bakerd.storage.store import Store


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"code": status_code, "error": message})


async def _http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return _error(exc.status_code, str(exc.detail))


async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    messages = [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()]
    return _error(422, "; ".join(messages))


def create_app(store: Store | None = None, lifespan: Any = None) -> FastAPI:
    """Create and configure the API application.

    Args:
        store: Store the routes read from. main.py may instead set
               ``app.state.store`` from its lifespan.
        lifespan: Optional async context manager for application lifespan events.

    Returns:
        Configured FastAPI application.
    """
    app = FastAPI(title="bakerd", version=__version__, lifespan=lifespan)

    app.state.store = store
    app.state.scheduler = None

    app.add_exception_handler(StarletteHTTPException, _http_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _validation_error_handler)  # type: ignore[arg-type]

    app.include_router(routes.router)

    return app
