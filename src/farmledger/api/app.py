from __future__ import annotations

import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from farmledger.api.errors import ApiError
from farmledger.api.routes_public import public_router
from farmledger.api.structured_logging import RequestLogMiddleware, configure_structured_logging
from farmledger.runtime.config import load_ledger_config
from farmledger.runtime.errors import LedgerError
from farmledger.runtime.ledger_boot import build_ledger as _build_ledger


def build_runtime():
    """Build the LedgerRuntime for the API process.

    Wrapper so tests can monkeypatch `farmledger.api.app.build_runtime`
    without reaching into runtime modules.
    """
    cfg = load_ledger_config()
    configure_structured_logging(cfg.log_level)
    return _build_ledger(cfg)


def create_app(*, boot_runtime: bool = True) -> FastAPI:
    """Create the FastAPI application.

    boot_runtime:
      - True (default): load config, build the ledger, attach app.state.runtime
      - False: keep lightweight for unit tests; attach a runtime manually
    """
    mode = os.environ.get("FARMLEDGER_MODE", "prod").strip().lower()

    @asynccontextmanager
    async def _lifespan(app: FastAPI):
        yield
        rt = getattr(app.state, "runtime", None)
        close = getattr(rt, "close", None)
        if callable(close):
            close()

    # Disable docs in production.
    if mode == "prod":
        app = FastAPI(
            title="farmledger API",
            docs_url=None,
            redoc_url=None,
            openapi_url=None,
            lifespan=_lifespan,
        )
    else:
        app = FastAPI(title="farmledger API", lifespan=_lifespan)

    app.state.runtime = build_runtime() if boot_runtime else None

    @app.exception_handler(ApiError)
    async def _api_error(_request: Request, exc: ApiError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content=exc.to_json())

    @app.exception_handler(LedgerError)
    async def _ledger_error(_request: Request, exc: LedgerError) -> JSONResponse:
        err = ApiError.from_ledger_error(exc)
        return JSONResponse(status_code=err.status_code, content=err.to_json())

    app.add_middleware(RequestLogMiddleware)
    app.include_router(public_router)

    return app
