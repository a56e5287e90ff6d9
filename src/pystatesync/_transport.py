"""Transport seam of the sync orchestrator and a JSON-over-HTTP adapter."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping, Sequence
from typing import Any, Protocol

import aiohttp

from pystatesync.exceptions import TransportError
from pystatesync.models.sync import BatchReply, SyncChange

_logger = logging.getLogger(__name__)

_DEFAULT_ENDPOINT = "/sync/batch"


class Transport(Protocol):
    """Structural transport interface used by the orchestrator.

    Any object with a matching ``send_batch`` coroutine works, which keeps
    test doubles trivial.  The reply is a :class:`BatchReply` or a mapping
    with ``success``, ``conflicts`` and ``errors`` keys.
    """

    async def send_batch(self, batch: list[SyncChange]) -> BatchReply | Mapping[str, Any]:
        ...


class HttpTransport:
    """POST each batch as JSON to ``{base_url}{endpoint}``.

    Request body: ``{"changes": [<SyncChange as JSON>, ...]}``.
    Expected reply: ``{"success": [...], "conflicts": [...], "errors": [...]}``
    with conflicts using either snake_case or camelCase field names.
    """

    def __init__(
        self,
        base_url: str,
        http_session: aiohttp.ClientSession,
        *,
        endpoint: str = _DEFAULT_ENDPOINT,
        headers: Mapping[str, str] | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._http = http_session
        self._endpoint = endpoint
        self._headers = dict(headers or {})

    async def send_batch(self, batch: Sequence[SyncChange]) -> BatchReply:
        endpoint = self._endpoint
        url = f"{self._base_url}{endpoint}"
        body = json.dumps({"changes": [change.model_dump(mode="json") for change in batch]})
        headers = {"content-type": "application/json; charset=UTF-8", **self._headers}

        _logger.debug("POST %s (%d changes)", url, len(batch))

        try:
            async with self._http.post(url, data=body, headers=headers) as resp:
                text = await resp.text()
                if resp.status != 200:
                    raise TransportError(
                        f"HTTP {resp.status} from {endpoint}: {text[:200]}",
                        status_code=resp.status,
                        endpoint=endpoint,
                    )
        except TransportError:
            raise
        except aiohttp.ClientError as exc:
            raise TransportError(
                f"Request to {endpoint} failed: {exc}",
                endpoint=endpoint,
            ) from exc

        try:
            body_json = json.loads(text)
        except json.JSONDecodeError as exc:
            raise TransportError(
                f"Invalid JSON from {endpoint}: {text[:200]}",
                status_code=200,
                endpoint=endpoint,
            ) from exc

        if not isinstance(body_json, dict):
            raise TransportError(
                f"Expected a JSON object from {endpoint}",
                status_code=200,
                endpoint=endpoint,
            )

        return BatchReply.model_validate(body_json)
