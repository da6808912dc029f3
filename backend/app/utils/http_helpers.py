"""Checked JSON requests against upstream geodata providers.

This module provides a single entry point, :func:`request_json`, for every
call made to Overpass, MediaWiki and the Wikidata SPARQL endpoint. It turns
transport errors, non-success status codes and undecodable bodies into one
exception type, :class:`UpstreamError`, tagged with a
:class:`~app.services.results.FailureReason`.

Example:
    Run an Overpass query:
        >>> import httpx
        >>> from app.utils.http_helpers import UpstreamError, request_json

        >>> async with httpx.AsyncClient() as client:
        ...     try:
        ...         payload = await request_json(
        ...             client,
        ...             "POST",
        ...             "https://overpass-api.de/api/interpreter",
        ...             data={"data": "[out:json];node(1);out;"},
        ...         )
        ...     except UpstreamError as e:
        ...         print(f"Overpass failed: {e.reason.value}: {e}")
"""

from __future__ import annotations

from typing import Any

import httpx

from app.services.results import FailureReason


class UpstreamError(RuntimeError):
    """Exception raised when an upstream provider call fails.

    Carries the :class:`FailureReason` so adapters can turn it into a typed
    ``Failure`` without inspecting the message.

    Example:
        Handle provider failures:
            >>> try:
            ...     await request_json(client, "GET", url)
            ... except UpstreamError as e:
            ...     assert e.reason in FailureReason
    """

    def __init__(
        self,
        reason: FailureReason,
        message: str,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.reason = reason
        self.status_code = status_code


async def request_json(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    **kwargs: Any,
) -> Any:
    """Send a request and return the decoded JSON body.

    Args:
        client: Shared async HTTP client.
        method: HTTP method.
        url: Absolute request URL.
        **kwargs: Forwarded to :meth:`httpx.AsyncClient.request`
            (``params``, ``data``, ``headers``...).

    Returns:
        The decoded JSON document.

    Raises:
        UpstreamError: On network failure (``transport``), a non-2xx status
            (``http_status``) or a body that is not JSON (``malformed``).
    """
    try:
        response = await client.request(method, url, **kwargs)
    except httpx.HTTPError as exc:
        raise UpstreamError(
            FailureReason.TRANSPORT, f"{method} {url}: {exc!r}"
        ) from exc

    if not response.is_success:
        raise UpstreamError(
            FailureReason.HTTP_STATUS,
            f"{method} {url}: HTTP {response.status_code}",
            status_code=response.status_code,
        )

    try:
        return response.json()
    except ValueError as exc:
        raise UpstreamError(
            FailureReason.MALFORMED, f"{method} {url}: invalid JSON body"
        ) from exc
