"""Live HTTP delivery over the raw, non-intercepted transport."""

from __future__ import annotations

import logging
from typing import Optional

import httpx

from offline_layer.errors import TransportError
from offline_layer.models import RequestDescriptor

logger = logging.getLogger(__name__)


class HttpTransport:
    """Issues requests straight to the network.

    Queue replays and connectivity probes go through here so they are never
    routed back into the offline interceptor.
    """

    def __init__(
        self,
        inner: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 30.0,
    ):
        self._timeout = timeout
        # A caller-supplied transport stays open; its owner closes it.
        self._owns_transport = inner is None
        self._client = httpx.AsyncClient(
            transport=inner or httpx.AsyncHTTPTransport(),
            timeout=timeout,
            follow_redirects=False,
        )

    async def send(
        self,
        descriptor: RequestDescriptor,
        timeout: Optional[float] = None,
    ) -> httpx.Response:
        """Send a request and read the full body.

        Raises:
            TransportError: If the network is unreachable, the request times out
                or the response body can not be read.
        """
        request = self._client.build_request(
            descriptor.method,
            descriptor.url,
            headers=list(descriptor.headers),
            content=descriptor.body,
            timeout=timeout if timeout is not None else self._timeout,
        )
        try:
            response = await self._client.send(request)
        except httpx.TimeoutException as e:
            raise TransportError(f"Timed out: {descriptor.method} {descriptor.url}") from e
        except httpx.RequestError as e:
            # Also covers bodies that fail to decode.
            raise TransportError(f"{type(e).__name__}: {e}") from e
        return response

    async def aclose(self) -> None:
        if self._owns_transport:
            await self._client.aclose()
