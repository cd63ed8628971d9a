import logging
import time
from typing import Callable

from fastapi import Request
from fastapi.responses import JSONResponse

from .config import Config


logger = logging.getLogger(__name__)

ALLOWED_METHODS = "GET, POST, PATCH, DELETE, OPTIONS"
REQUEST_ID_HEADER = "X-Request-ID"
SLOW_REQUEST_SECONDS = 1.0


def _request_id(request: Request) -> str:
    return request.headers.get(REQUEST_ID_HEADER) or f"{int(time.time() * 1000)}-{id(request)}"


def _apply_cors_headers(request: Request, response) -> None:
    # Error responses built here bypass CORSMiddleware
    origin = request.headers.get("origin")
    if origin and origin in Config.allowed_origins():
        response.headers["Access-Control-Allow-Origin"] = origin
        response.headers["Access-Control-Allow-Credentials"] = "true"
        response.headers["Access-Control-Allow-Methods"] = ALLOWED_METHODS
        response.headers["Access-Control-Allow-Headers"] = "*"


async def log_requests(request: Request, call_next: Callable):
    """Log failed and slow requests and tag every response with its request id."""
    start_time = time.time()
    request_id = _request_id(request)
    request.state.request_id = request_id

    try:
        response = await call_next(request)
    except Exception as e:
        process_time = time.time() - start_time
        logger.error(f"[{request_id}] {request.method} {request.url.path} - ERROR: {str(e)} - {process_time:.2f}s")
        raise

    process_time = time.time() - start_time
    line = f"[{request_id}] {request.method} {request.url.path} - {response.status_code} - {process_time:.2f}s"
    if response.status_code >= 500:
        logger.error(line)
    elif response.status_code >= 400:
        logger.warning(line)
    elif process_time > SLOW_REQUEST_SECONDS:
        logger.info(line)

    response.headers[REQUEST_ID_HEADER] = request_id
    return response


async def global_exception_handler(request: Request, exc: Exception):
    request_id = getattr(request.state, "request_id", None) or _request_id(request)
    logger.error(f"[{request_id}] Unhandled exception in {request.method} {request.url.path}: {str(exc)}", exc_info=True)

    response = JSONResponse(status_code=500, content={"detail": "Internal server error"})
    response.headers[REQUEST_ID_HEADER] = request_id
    _apply_cors_headers(request, response)
    return response
