# backend/error_handlers.py

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from backend.errors import TableError

logger = logging.getLogger(__name__)


def register_error_handlers(app: FastAPI):
    @app.exception_handler(TableError)
    async def handle_table_error(request: Request, e: TableError):
        logger.info(f"{request.method} {request.url.path} rejected: {e.code} ({e.message})")
        return JSONResponse(status_code=e.status_code, content={"error": e.message, "code": e.code})

    @app.exception_handler(Exception)
    async def handle_exception(request: Request, e: Exception):
        logger.error("Unhandled exception", exc_info=e)
        return JSONResponse(status_code=500, content={"error": "Internal server error"})
