# tenantbridge/middleware/request_id.py
from __future__ import annotations

import re
import uuid
from contextvars import ContextVar
from typing import Callable, Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

REQUEST_ID_HEADER = "X-Request-ID"

# caller-supplied ids are echoed into logs; keep them short and printable
_ACCEPTABLE_ID = re.compile(r"^[A-Za-z0-9._:-]{1,128}$")

_request_id: ContextVar[Optional[str]] = ContextVar("tenantbridge_request_id", default=None)


def get_request_id() -> Optional[str]:
    return _request_id.get()


def _incoming_id(request: Request) -> Optional[str]:
    rid = (request.headers.get(REQUEST_ID_HEADER) or "").strip()
    return rid if _ACCEPTABLE_ID.match(rid) else None


class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    Correlation id per request, echoed in the response header.

    The id is the only request-scoped value kept in a ContextVar; the
    organization/user triple travels with the database session instead.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        rid = _incoming_id(request) or uuid.uuid4().hex
        request.state.request_id = rid

        token = _request_id.set(rid)
        try:
            response = await call_next(request)
        finally:
            _request_id.reset(token)
        response.headers[REQUEST_ID_HEADER] = rid
        return response
