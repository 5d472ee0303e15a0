import logging
from typing import Any, Callable, Optional, Union

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.responses import Response

from x402pay.http.paywall import ServerPaywall
from x402pay.path import path_is_match

logger = logging.getLogger(__name__)


class _StarletteRequestAdapter:
    """Exposes a Starlette request through the paywall request protocol."""

    def __init__(self, request: Request) -> None:
        self._request = request

    @property
    def headers(self) -> dict[str, str]:
        return dict(self._request.headers)

    @property
    def url(self) -> str:
        return self._request.url.path


class _PaywallResponseRecorder:
    """Collects what the paywall writes so it can be replayed onto a Starlette response."""

    def __init__(self) -> None:
        self.status_code = 200
        self.body: Optional[dict[str, Any]] = None
        self.headers: dict[str, str] = {}

    def status(self, code: int) -> "_PaywallResponseRecorder":
        self.status_code = code
        return self

    def json(self, body: dict[str, Any]) -> None:
        self.body = body

    def set_header(self, name: str, value: str) -> "_PaywallResponseRecorder":
        self.headers[name] = value
        return self


def require_payment(paywall: ServerPaywall, path: Union[str, list[str]] = "*"):
    """Generate a FastAPI middleware that puts routes behind a paywall.

    Args:
        paywall (ServerPaywall): Paywall holding the price, recipient and facilitator.
        path (str | list[str], optional): Path(s) to gate with payments. Exact paths,
            globs and "regex:" patterns are accepted. Defaults to "*" for all paths.

    Returns:
        Callable: FastAPI middleware function for ``app.middleware("http")``

    Example:
        ```python
        paywall = ServerPaywall(PaywallConfig(pay_to="0x...", facilitator_url="...", amount=50_000))
        app.middleware("http")(require_payment(paywall, path="/premium/*"))
        ```
    """

    async def middleware(request: Request, call_next: Callable):
        # Skip if the path is not guarded
        if not path_is_match(path, request.url.path):
            return await call_next(request)

        recorder = _PaywallResponseRecorder()
        downstream: list[Response] = []

        async def next_handler() -> None:
            downstream.append(await call_next(request))

        await paywall(_StarletteRequestAdapter(request), recorder, next_handler)

        if not downstream:
            return JSONResponse(
                content=recorder.body or {},
                status_code=recorder.status_code,
                headers=recorder.headers,
            )

        response = downstream[0]
        for name, value in recorder.headers.items():
            response.headers[name] = value
        return response

    return middleware
