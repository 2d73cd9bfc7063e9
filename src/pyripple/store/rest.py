"""Realtime-database REST binding.

One-shot operations map onto plain HTTP verbs against ``{url}/{path}.json``.
Compare-and-swap uses ETags (``X-Firebase-ETag`` + ``if-match``; HTTP 412
signals a conflict and carries the current value).  Subscriptions consume
the server-sent event stream (``Accept: text/event-stream``) and keep a
local copy of the subscribed subtree, delivering the full value after
every ``put``/``patch`` event.
"""

from __future__ import annotations

import asyncio
import contextlib
import copy
import json
import logging
from collections.abc import AsyncIterable, AsyncIterator, Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol

import aiohttp

from pyripple import paths
from pyripple._constants import USER_AGENT
from pyripple._redact import redact_for_log, redact_url
from pyripple.config import RippleConfig
from pyripple.exceptions import StoreError, StoreNetworkError, StorePermissionError
from pyripple.store.base import (
    CasResult,
    ErrorCallback,
    Unsubscribe,
    ValueCallback,
    prune_empty,
    same_value,
)

_logger = logging.getLogger(__name__)

_PERMISSION_STATUSES = frozenset({401, 403})
_PRECONDITION_FAILED = 412


@dataclass(frozen=True)
class RestResponse:
    """Decoded REST reply."""

    status: int
    body: Any
    etag: str | None = None


@dataclass(frozen=True)
class SseEvent:
    """One server-sent event (``event:`` name plus joined ``data:`` lines)."""

    event: str
    data: str = ""


class Transport(Protocol):
    """Structural transport interface used by :class:`RestStore`.

    Tests pass fakes implementing these two methods.
    """

    async def request(
        self,
        method: str,
        path: str,
        *,
        body: Any = None,
        headers: Mapping[str, str] | None = None,
        accept_status: frozenset[int] = frozenset({200}),
    ) -> RestResponse:
        ...

    def stream(self, path: str) -> contextlib.AbstractAsyncContextManager[AsyncIterable[bytes]]:
        ...


def _status_error(status: int, path: str, text: str) -> StoreError:
    if status in _PERMISSION_STATUSES:
        return StorePermissionError(
            f"Permission denied at {path!r}: {text[:200]}",
            path=path,
            status_code=status,
        )
    return StoreNetworkError(
        f"HTTP {status} at {path!r}: {text[:200]}",
        path=path,
        status_code=status,
    )


class HttpTransport:
    """aiohttp transport bound to one database URL and auth token."""

    def __init__(self, config: RippleConfig, http_session: aiohttp.ClientSession) -> None:
        self._config = config
        self._base_url = config.require_database_url()
        self._http = http_session

    def _url(self, path: str) -> str:
        normalized = paths.normalize(path)
        return f"{self._base_url}/{normalized}.json" if normalized else f"{self._base_url}/.json"

    def _params(self) -> dict[str, str]:
        if self._config.auth_token:
            return {"auth": self._config.auth_token}
        return {}

    async def request(
        self,
        method: str,
        path: str,
        *,
        body: Any = None,
        headers: Mapping[str, str] | None = None,
        accept_status: frozenset[int] = frozenset({200}),
    ) -> RestResponse:
        url = self._url(path)
        request_headers: dict[str, str] = {
            "accept": "application/json",
            "user-agent": USER_AGENT,
        }
        if headers:
            request_headers.update(headers)
        data = None if method in {"GET", "DELETE"} else json.dumps(body, separators=(",", ":"))
        if data is not None:
            request_headers["content-type"] = "application/json; charset=UTF-8"

        _logger.debug("%s %s", method, redact_url(url))
        if self._config.api_trace_enabled:
            _logger.debug(
                "REST request method=%s path=%s headers=%s body=%s",
                method,
                path,
                redact_for_log(request_headers),
                redact_for_log(body),
            )

        timeout = aiohttp.ClientTimeout(total=self._config.request_timeout)
        try:
            async with self._http.request(
                method,
                url,
                params=self._params(),
                data=data,
                headers=request_headers,
                timeout=timeout,
            ) as resp:
                text = await resp.text()
                etag = resp.headers.get("ETag")
                status = resp.status
        except (aiohttp.ClientError, TimeoutError) as exc:
            raise StoreNetworkError(f"{method} {path!r} failed: {exc}", path=path) from exc

        if status not in accept_status:
            raise _status_error(status, path, text)

        try:
            decoded = json.loads(text) if text else None
        except json.JSONDecodeError as exc:
            raise StoreNetworkError(
                f"Invalid JSON from {path!r}: {text[:200]}",
                path=path,
                status_code=status,
            ) from exc

        if self._config.api_trace_enabled:
            _logger.debug(
                "REST response status=%s path=%s etag=%s body=%s",
                status,
                path,
                etag,
                redact_for_log(decoded),
            )
        return RestResponse(status=status, body=decoded, etag=etag)

    @contextlib.asynccontextmanager
    async def stream(self, path: str) -> AsyncIterator[AsyncIterable[bytes]]:
        url = self._url(path)
        headers = {"accept": "text/event-stream", "user-agent": USER_AGENT}
        _logger.debug("STREAM %s", redact_url(url))
        # No read timeout: the server sends keep-alive events roughly every 30s.
        timeout = aiohttp.ClientTimeout(total=None, sock_connect=self._config.request_timeout)
        try:
            async with self._http.get(url, params=self._params(), headers=headers, timeout=timeout) as resp:
                if resp.status != 200:
                    text = await resp.text()
                    raise _status_error(resp.status, path, text)
                yield resp.content
        except aiohttp.ClientError as exc:
            raise StoreNetworkError(f"Stream at {path!r} failed: {exc}", path=path) from exc


async def iter_sse_events(lines: AsyncIterable[bytes]) -> AsyncIterator[SseEvent]:
    """Parse a byte-line stream into server-sent events."""
    event = ""
    data: list[str] = []
    async for raw in lines:
        line = raw.decode("utf-8").rstrip("\r\n")
        if not line:
            if event or data:
                yield SseEvent(event=event or "message", data="\n".join(data))
            event = ""
            data = []
            continue
        if line.startswith(":"):
            continue
        name, _, value = line.partition(":")
        value = value[1:] if value.startswith(" ") else value
        if name == "event":
            event = value
        elif name == "data":
            data.append(value)
    if event or data:
        yield SseEvent(event=event or "message", data="\n".join(data))


def _set_in(tree: Any, segments: list[str], value: Any) -> Any:
    if not segments:
        return copy.deepcopy(value)
    base = dict(tree) if isinstance(tree, dict) else {}
    head, rest = segments[0], segments[1:]
    base[head] = _set_in(base.get(head), rest, value)
    return base


def apply_stream_event(local: Any, kind: str, relative_path: str, data: Any) -> Any:
    """Apply a ``put``/``patch`` event to the local copy of a subtree.

    ``relative_path`` is relative to the subscribed path (``"/"`` for the
    subscribed location itself).
    """
    segments = paths.split(relative_path)
    if kind == "put":
        return prune_empty(_set_in(local, segments, data))
    if kind == "patch":
        if not isinstance(data, dict):
            raise ValueError("patch event data must be an object")
        updated = local
        for child_path, child_value in data.items():
            updated = _set_in(updated, segments + paths.split(child_path), child_value)
        return prune_empty(updated)
    raise ValueError(f"Unsupported stream event {kind!r}")


@dataclass
class _EtagCache:
    entries: dict[str, tuple[Any, str]] = field(default_factory=dict)

    def remember(self, path: str, value: Any, etag: str | None) -> None:
        if etag:
            self.entries[path] = (copy.deepcopy(value), etag)

    def lookup(self, path: str, expected: Any) -> str | None:
        entry = self.entries.get(path)
        if entry is None or not same_value(entry[0], expected):
            return None
        return entry[1]


class RestStore:
    """Live-value store over the realtime-database REST API."""

    def __init__(self, transport: Transport) -> None:
        self._transport = transport
        self._etags = _EtagCache()
        self._streams: set[asyncio.Task[None]] = set()

    @classmethod
    def from_session(cls, config: RippleConfig, http_session: aiohttp.ClientSession) -> RestStore:
        return cls(HttpTransport(config, http_session))

    async def read(self, path: str) -> Any:
        path = paths.normalize(path)
        response = await self._transport.request("GET", path)
        return prune_empty(response.body)

    async def _read_versioned(self, path: str) -> tuple[Any, str]:
        response = await self._transport.request("GET", path, headers={"X-Firebase-ETag": "true"})
        if not response.etag:
            raise StoreNetworkError(f"Store did not return an ETag for {path!r}", path=path)
        value = prune_empty(response.body)
        self._etags.remember(path, value, response.etag)
        return value, response.etag

    async def compare_and_swap(self, path: str, expected: Any, new_value: Any) -> CasResult:
        path = paths.normalize(path)
        expected = prune_empty(copy.deepcopy(expected))
        etag = self._etags.lookup(path, expected)
        if etag is None:
            current, etag = await self._read_versioned(path)
            if not same_value(current, expected):
                return CasResult(applied=False, value=current)

        response = await self._transport.request(
            "PUT",
            path,
            body=new_value,
            headers={"if-match": etag, "X-Firebase-ETag": "true"},
            accept_status=frozenset({200, _PRECONDITION_FAILED}),
        )
        value = prune_empty(response.body)
        self._etags.remember(path, value, response.etag)
        if response.status == _PRECONDITION_FAILED:
            _logger.debug("CAS conflict path=%s", path)
            return CasResult(applied=False, value=value)
        return CasResult(applied=True, value=value)

    async def write(self, path: str, value: Any) -> None:
        path = paths.normalize(path)
        if value is None:
            await self._transport.request("DELETE", path)
        else:
            await self._transport.request("PUT", path, body=value)
        self._etags.entries.pop(path, None)

    async def update(self, changes: Mapping[str, Any]) -> None:
        normalized = {paths.normalize(p): v for p, v in changes.items()}
        if not normalized:
            return
        await self._transport.request("PATCH", paths.ROOT, body=normalized)
        for path in normalized:
            self._etags.entries.pop(path, None)

    def subscribe(self, path: str, on_value: ValueCallback, on_error: ErrorCallback) -> Unsubscribe:
        path = paths.normalize(path)
        loop = asyncio.get_running_loop()
        task = loop.create_task(self._run_stream(path, on_value, on_error), name=f"ripple-stream:{path}")
        self._streams.add(task)
        task.add_done_callback(self._streams.discard)

        def _unsubscribe() -> None:
            if not task.done():
                _logger.debug("Stream cancel requested path=%s", path)
                task.cancel()

        return _unsubscribe

    async def _run_stream(self, path: str, on_value: ValueCallback, on_error: ErrorCallback) -> None:
        local: Any = None
        try:
            async with self._transport.stream(path) as lines:
                async for event in iter_sse_events(lines):
                    if event.event == "keep-alive":
                        continue
                    if event.event in {"cancel", "auth_revoked"}:
                        raise StorePermissionError(
                            f"Stream at {path!r} terminated by server: {event.event}",
                            path=path,
                        )
                    if event.event not in {"put", "patch"}:
                        _logger.debug("Ignoring stream event=%s path=%s", event.event, path)
                        continue
                    payload = json.loads(event.data)
                    local = apply_stream_event(local, event.event, payload["path"], payload.get("data"))
                    on_value(copy.deepcopy(local))
            raise StoreNetworkError(f"Stream at {path!r} closed by server", path=path)
        except StoreError as exc:
            _logger.warning("Stream error path=%s: %s", path, exc)
            on_error(exc)
        except (json.JSONDecodeError, KeyError, ValueError, TypeError, AttributeError) as exc:
            _logger.warning("Invalid stream payload path=%s: %s", path, exc)
            on_error(StoreNetworkError(f"Invalid stream payload at {path!r}: {exc}", path=path))

    async def aclose(self) -> None:
        """Cancel every running stream task."""
        tasks = list(self._streams)
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
