from __future__ import annotations

import sys
from contextlib import AsyncExitStack
from types import TracebackType
from typing import Any, Callable

import structlog
from anyio import Event, create_task_group
from anyio.abc import TaskGroup
from httpx import (
    AsyncBaseTransport,
    AsyncClient,
    HTTPError,
    InvalidURL,
    Response,
    Timeout,
    URL,
)

from .exceptions import TransportError

if sys.version_info >= (3, 11):
    from typing import Self
else:
    from typing_extensions import Self

logger = structlog.get_logger()

RequestKey = tuple[str, ...]
OnSuccess = Callable[[Any], None]
OnError = Callable[[int | None, str], None]


class _Flight:
    """A request on the wire, and everyone waiting for its response."""

    def __init__(self) -> None:
        self.done = Event()
        self.continuations: list[tuple[OnSuccess | None, OnError | None]] = []

    def add(self, on_success: OnSuccess | None, on_error: OnError | None) -> None:
        self.continuations.append((on_success, on_error))


class QueryClient:
    """Issues requests to notebook servers, collapsing identical in-flight requests.

    Must be used as an async context manager, for instance:
    ```py
    async with QueryClient(tokens={"http://localhost:8888": "secret"}) as client:
        ...
    ```

    Every request carries a de-duplication key. While a request with a given key is
    in flight, issuing another one with the same key does not hit the network: its
    continuations are attached to the running request and fire with the same
    response.
    """

    _task_group: TaskGroup
    _in_flight: dict[RequestKey, _Flight]

    def __init__(
        self,
        *,
        tokens: dict[str, str] | None = None,
        timeout: float = 30.0,
        transport: AsyncBaseTransport | None = None,
    ) -> None:
        self._tokens = {} if tokens is None else dict(tokens)
        self._timeout = timeout
        self._transport = transport
        self._xsrf: dict[tuple[str, str, int | None], str] = {}
        self._in_flight = {}
        self.request_count = 0

    async def __aenter__(self) -> Self:
        async with AsyncExitStack() as exit_stack:
            self._client = await exit_stack.enter_async_context(
                AsyncClient(transport=self._transport, timeout=Timeout(self._timeout))
            )
            self._task_group = await exit_stack.enter_async_context(create_task_group())
            self._exit_stack = exit_stack.pop_all()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> bool | None:
        return await self._exit_stack.__aexit__(exc_type, exc_val, exc_tb)

    def in_flight(self, key: RequestKey) -> bool:
        return key in self._in_flight

    async def issue(
        self,
        method: str,
        url: str,
        *,
        key: RequestKey,
        json: Any = None,
        on_success: OnSuccess | None = None,
        on_error: OnError | None = None,
        sync: bool = False,
    ) -> None:
        """Issue a request, or join the in-flight one with the same key.

        Exactly one of the continuations is called once the response has arrived.
        With ``sync=True`` this returns only after the continuations have run,
        otherwise it returns immediately.
        """
        flight = self._in_flight.get(key)
        if flight is None:
            flight = self._in_flight[key] = _Flight()
            flight.add(on_success, on_error)
            self._task_group.start_soon(self._run, flight, key, method.upper(), url, json)
        else:
            logger.debug("Joining in-flight request", key=key)
            flight.add(on_success, on_error)
        if sync:
            await flight.done.wait()

    async def _run(
        self, flight: _Flight, key: RequestKey, method: str, url: str, json: Any
    ) -> None:
        try:
            try:
                body = await self._request(method, url, json)
            finally:
                # later requests with the same key go to the network again
                del self._in_flight[key]
        except TransportError as e:
            for _, on_error in flight.continuations:
                if on_error is not None:
                    self._call(key, on_error, e.status_code, e.details)
        else:
            for on_success, _ in flight.continuations:
                if on_success is not None:
                    self._call(key, on_success, body)
        finally:
            flight.done.set()

    def _call(self, key: RequestKey, continuation: Callable, *args: Any) -> None:
        # one failing continuation must not starve the others of the same flight
        try:
            continuation(*args)
        except Exception:
            logger.exception("Request continuation failed", key=key)

    async def _request(self, method: str, url: str, json: Any) -> Any:
        self.request_count += 1
        headers: dict[str, str] = {}
        token = self._token_for(url)
        if token:
            headers["Authorization"] = f"token {token}"
        logger.debug("Sending request", method=method, url=url)
        try:
            request = self._client.build_request(method, url, json=json, headers=headers)
            xsrf = self._xsrf.get(_origin(request.url))
            if xsrf:
                request.headers["X-XSRFToken"] = xsrf
            response = await self._client.send(request)
        except (HTTPError, InvalidURL) as e:
            raise TransportError(None, method, url, repr(e)) from e
        self._update_session(response)
        if response.status_code >= 400:
            raise TransportError(
                response.status_code, method, url, (response.text or "").strip()
            )
        if response.status_code == 204 or not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise TransportError(
                response.status_code, method, url, f"Invalid JSON body: {e}"
            ) from e

    def _update_session(self, response: Response) -> None:
        # cookies are kept by the httpx client, each server's xsrf token also goes in a header
        xsrf = response.cookies.get("_xsrf")
        if xsrf:
            self._xsrf[_origin(response.request.url)] = xsrf

    def _token_for(self, url: str) -> str | None:
        for server, token in self._tokens.items():
            if url.startswith(server.rstrip("/")):
                return token
        return None


def _origin(url: URL) -> tuple[str, str, int | None]:
    return url.scheme, url.host, url.port
