from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from coupons_api.core import config

logger = logging.getLogger(__name__)

SERVER_ERROR_MESSAGE = "Server Error"
GENERIC_ERROR_DETAIL = "Internal Server Error"


def public_error_detail(exc: Exception) -> str:
    """Text placed in the ``error`` field of a 500 body.

    Driver messages can carry table names and connection strings, so
    production only ever gets the generic detail.
    """
    if config.IS_PROD:
        return GENERIC_ERROR_DETAIL
    return str(exc) or exc.__class__.__name__


def server_error_response(exc: Exception, **extra) -> JSONResponse:
    content = dict(extra)
    content["message"] = SERVER_ERROR_MESSAGE
    content["error"] = public_error_detail(exc)
    return JSONResponse(status_code=500, content=content)


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(SQLAlchemyError)
    async def store_failure_handler(request: Request, exc: SQLAlchemyError):
        logger.exception(
            "store failure",
            exc_info=exc,
            extra={"endpoint": request.url.path, "method": request.method},
        )
        return server_error_response(exc)
