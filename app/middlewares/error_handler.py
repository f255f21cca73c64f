"""
Error handler middleware for centralized exception handling.

Business errors become ``{"success": false, "error": {...}}`` responses with
the status code carried by the exception; anything unexpected is logged and
returned as a generic 500.
"""
import logging
from typing import Callable

from aiohttp import web

from core.exceptions import LedgerIntegrityError, ReferralLedgerError

logger = logging.getLogger(__name__)


def error_response(status: int, code: str, message: str, **details) -> web.Response:
    error = {"code": code, "message": message}
    error.update(details)
    return web.json_response({"success": False, "error": error}, status=status)


@web.middleware
async def error_middleware(request: web.Request, handler: Callable):
    """Translate exceptions raised by handlers into JSON error responses."""
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except LedgerIntegrityError as e:
        logger.error(f"Ledger integrity failure on {request.method} {request.path}: {e.message}")
        return web.json_response({"success": False, "error": e.to_dict()}, status=e.http_status)
    except ReferralLedgerError as e:
        logger.info(f"{request.method} {request.path} -> {e.http_status} {e.code}: {e.message}")
        return web.json_response({"success": False, "error": e.to_dict()}, status=e.http_status)
    except Exception as e:
        logger.error(f"Unhandled error on {request.method} {request.path}: {e}", exc_info=True)
        return error_response(500, "internal_error", "Internal server error")
