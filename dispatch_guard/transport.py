"""Transport layer — Network capability, cancellation and operation dispatch.

The coordinator never builds URLs or payload shapes itself.  It hands an
operation identifier plus arguments to a ``NetworkCapability``:

  - ``OperationTable`` — explicit map of operation id → async handler; used
    for replay and for in-process backends (tests, fakes, SDK wrappers).
  - ``HttpTransport``  — maps operation ids to ``(method, path)`` routes and
    sends them with ``httpx.AsyncClient``.

Both raise ``TransportError`` (≥ 500 or network failure), ``ClientError``
(4xx) or ``RequestTimeoutError``; an unknown operation raises
``UnknownOperationError``.
"""

from __future__ import annotations

import asyncio
import string
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Protocol

import httpx

from dispatch_guard.exceptions import (
    ClientError,
    RequestCancelledError,
    RequestTimeoutError,
    TransportError,
    UnknownOperationError,
)
from dispatch_guard.logging import get_logger

log = get_logger(__name__)


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------


class CancelSignal:
    """Cooperative cancellation flag shared between a caller and a request."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    async def wait(self) -> None:
        await self._event.wait()

    def raise_if_cancelled(self, key: str = "request") -> None:
        if self.cancelled:
            raise RequestCancelledError(key)


@dataclass
class CallContext:
    """Per-call extras passed alongside the operation arguments."""

    signal: CancelSignal | None = None
    headers: dict[str, str] = field(default_factory=dict)


class NetworkCapability(Protocol):
    async def send(
        self,
        operation: str,
        args: dict[str, Any],
        *,
        signal: CancelSignal | None = None,
        headers: dict[str, str] | None = None,
    ) -> Any: ...


# ---------------------------------------------------------------------------
# OperationTable
# ---------------------------------------------------------------------------

Handler = Callable[[dict[str, Any], CallContext], Awaitable[Any]]


class OperationTable:
    """Explicit operation id → handler registry.

    Usage::

        ops = OperationTable()

        @ops.operation("orders:create")
        async def create_order(args, ctx):
            return await api.create_order(**args)

        await ops.send("orders:create", {"sku": "A1"})
    """

    def __init__(self, handlers: dict[str, Handler] | None = None) -> None:
        self._handlers: dict[str, Handler] = dict(handlers or {})

    def register(self, operation: str, handler: Handler) -> None:
        self._handlers[operation] = handler

    def operation(self, name: str) -> Callable[[Handler], Handler]:
        def decorator(fn: Handler) -> Handler:
            self.register(name, fn)
            return fn

        return decorator

    def unregister(self, operation: str) -> bool:
        return self._handlers.pop(operation, None) is not None

    def has(self, operation: str) -> bool:
        return operation in self._handlers

    def operations(self) -> list[str]:
        return sorted(self._handlers)

    async def send(
        self,
        operation: str,
        args: dict[str, Any],
        *,
        signal: CancelSignal | None = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        handler = self._handlers.get(operation)
        if handler is None:
            raise UnknownOperationError(operation)
        if signal is not None:
            signal.raise_if_cancelled(operation)
        return await handler(args, CallContext(signal=signal, headers=dict(headers or {})))


# ---------------------------------------------------------------------------
# HttpTransport
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Route:
    method: str
    path: str

    @property
    def placeholders(self) -> set[str]:
        return {name for _, name, _, _ in string.Formatter().parse(self.path) if name}


_BODYLESS = {"GET", "DELETE", "HEAD"}


class HttpTransport:
    """Send operations over HTTP using a route table.

    Path placeholders (``/orders/{order_id}``) are filled from the arguments;
    remaining arguments become the query string for GET/DELETE/HEAD and the
    JSON body otherwise.

    Usage::

        transport = HttpTransport(
            "https://api.example.com",
            {"orders:list": ("GET", "/orders"), "orders:create": ("POST", "/orders")},
        )
    """

    def __init__(
        self,
        base_url: str,
        routes: dict[str, tuple[str, str]],
        client: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
    ) -> None:
        self._routes = {op: Route(method.upper(), path) for op, (method, path) in routes.items()}
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self._owns_client = client is None

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def send(
        self,
        operation: str,
        args: dict[str, Any],
        *,
        signal: CancelSignal | None = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        route = self._routes.get(operation)
        if route is None:
            raise UnknownOperationError(operation)
        request = self._build_request(route, args, headers or {})

        if signal is None:
            response = await self._dispatch(operation, request)
        else:
            signal.raise_if_cancelled(operation)
            response = await self._dispatch_cancellable(operation, request, signal)
        return self._decode(operation, response)

    def _build_request(
        self, route: Route, args: dict[str, Any], headers: dict[str, str]
    ) -> httpx.Request:
        names = route.placeholders
        missing = names - set(args)
        if missing:
            raise ClientError(
                f"Missing path parameters: {sorted(missing)}",
                context={"path": route.path},
            )
        path = route.path.format(**{n: args[n] for n in names})
        rest = {k: v for k, v in args.items() if k not in names}
        if route.method in _BODYLESS:
            return self._client.build_request(route.method, path, params=rest, headers=headers)
        return self._client.build_request(route.method, path, json=rest, headers=headers)

    async def _dispatch(self, operation: str, request: httpx.Request) -> httpx.Response:
        try:
            return await self._client.send(request)
        except httpx.TimeoutException as exc:
            raise RequestTimeoutError(
                f"Timeout sending '{operation}': {exc}", context={"operation": operation}
            ) from exc
        except httpx.HTTPError as exc:
            raise TransportError(
                f"Network error sending '{operation}': {exc}", context={"operation": operation}
            ) from exc

    async def _dispatch_cancellable(
        self, operation: str, request: httpx.Request, signal: CancelSignal
    ) -> httpx.Response:
        send = asyncio.ensure_future(self._dispatch(operation, request))
        cancelled = asyncio.ensure_future(signal.wait())
        try:
            await asyncio.wait({send, cancelled}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            cancelled.cancel()
        if not send.done():
            send.cancel()
            log.debug("http_request_aborted", operation=operation)
            raise RequestCancelledError(operation)
        return send.result()

    def _decode(self, operation: str, response: httpx.Response) -> Any:
        status = response.status_code
        if status >= 500:
            raise TransportError(
                f"'{operation}' failed with HTTP {status}",
                status_code=status,
                context={"operation": operation},
            )
        if status >= 400:
            raise ClientError(
                f"'{operation}' rejected with HTTP {status}",
                status_code=status,
                context={"operation": operation, "body": response.text[:500]},
            )
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return response.text
