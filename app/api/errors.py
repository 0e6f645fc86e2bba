"""Render domain errors as structured JSON responses."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.core.errors import PublishingError

logger = logging.getLogger(__name__)


async def publishing_error_handler(request: Request, exc: PublishingError) -> JSONResponse:
    level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
    logger.log(level, "%s %s failed: %s (%s)", request.method, request.url.path, exc.kind, exc.message)
    return JSONResponse(status_code=int(exc.status_code), content={"error": exc.to_dict()})


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(PublishingError, publishing_error_handler)


__all__ = ["publishing_error_handler", "register_exception_handlers"]
