"""CORS handling for browser clients of the escalation API.

The SheShield web app calls the API directly, sending the Supabase client
headers.  Every origin is accepted and every preflight is answered with
an empty 200 carrying :data:`CORS_HEADERS`, whatever request headers the
browser announces.
"""

from __future__ import annotations

from typing import Final

from starlette.datastructures import Headers
from starlette.middleware.cors import CORSMiddleware
from starlette.responses import Response

CORS_HEADERS: Final[dict[str, str]] = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
}


class PreflightCORSMiddleware(CORSMiddleware):
    """``CORSMiddleware`` whose preflight reply is an empty body with fixed headers.

    Starlette answers preflights itself with ``"OK"`` and rejects
    unlisted request headers with 400; browser clients of this API expect
    neither.  Simple (non-preflight) requests are handled unchanged.
    """

    def __init__(self, app, **kwargs) -> None:
        kwargs.setdefault("allow_origins", ["*"])
        kwargs.setdefault("allow_methods", ["*"])
        kwargs.setdefault("allow_headers", ["*"])
        super().__init__(app, **kwargs)

    def preflight_response(self, request_headers: Headers) -> Response:
        return Response(status_code=200, headers=CORS_HEADERS)
