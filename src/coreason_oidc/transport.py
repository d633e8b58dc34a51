# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_identity

"""
HTTP plumbing for discovery, JWKS and userinfo fetches.

Provider URLs are administrator-supplied, so the default transport pins DNS to a validated public
address (SSRF / DNS-rebinding protection), and every fetch is bounded in size.
"""

import ipaddress
import json
import socket
from typing import Any

import anyio
import httpx

from coreason_oidc.exceptions import FetchError, OversizedResponseError, SecurityError
from coreason_oidc.utils.logger import logger

DEFAULT_MAX_BYTES = 1_048_576


class SafeHTTPTransport(httpx.AsyncHTTPTransport):
    """
    A secure HTTP transport that enforces DNS pinning to prevent SSRF/DNS Rebinding attacks.

    It resolves the hostname, validates the address against blocked ranges
    (private, loopback, link-local, reserved, multicast), and connects to that specific address
    while preserving the original Host header and SNI for TLS verification.
    """

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        hostname = request.url.host

        try:
            ip_obj = ipaddress.ip_address(hostname)
        except ValueError:
            ip_obj = None

        if ip_obj is not None:
            self._validate_ip(ip_obj, hostname)
            return await super().handle_async_request(request)

        try:
            addr_infos = await anyio.to_thread.run_sync(socket.getaddrinfo, hostname, None, 0, socket.SOCK_STREAM)
        except socket.gaierror as e:
            logger.error(f"DNS resolution failed for {hostname}: {e}")
            raise SecurityError(f"DNS resolution failed for {hostname}") from e

        target_ip: str | None = None
        for _, _, _, _, sockaddr in addr_infos:
            try:
                candidate = ipaddress.ip_address(sockaddr[0])
                self._validate_ip(candidate, hostname)
            except (SecurityError, ValueError):
                continue
            target_ip = str(candidate)
            break

        if not target_ip:
            logger.error(f"SSRF Protection: Blocked {hostname}, no public address found")
            raise SecurityError(f"SSRF Protection: Blocked {hostname}, no public address found")

        request.extensions["sni_hostname"] = hostname
        if "Host" not in request.headers:
            request.headers["Host"] = request.url.netloc.decode("ascii")
        request.url = request.url.copy_with(host=target_ip)

        logger.debug(f"DNS Pinned: {hostname} -> {target_ip}")
        return await super().handle_async_request(request)

    def _validate_ip(self, ip_obj: Any, hostname: str) -> None:
        if (
            ip_obj.is_private
            or ip_obj.is_loopback
            or ip_obj.is_link_local
            or ip_obj.is_reserved
            or ip_obj.is_multicast
        ):
            logger.warning(f"SSRF Protection: Blocked access to {hostname} ({ip_obj})")
            raise SecurityError(f"SSRF Protection: Blocked access to {hostname} ({ip_obj})")


async def safe_fetch(
    client: httpx.AsyncClient,
    url: str,
    headers: dict[str, str] | None = None,
    max_bytes: int = DEFAULT_MAX_BYTES,
) -> bytes:
    """
    Performs a GET request and returns the raw body, enforcing a size limit while streaming.

    Args:
        client: The async HTTP client.
        url: The URL to fetch.
        headers: Optional request headers.
        max_bytes: Maximum accepted body size.

    Returns:
        bytes: The response body.

    Raises:
        OversizedResponseError: If the body exceeds `max_bytes`.
        FetchError: On network errors or non-2xx responses.
    """
    try:
        async with client.stream("GET", url, headers=headers) as response:
            response.raise_for_status()

            content_length = response.headers.get("Content-Length")
            if content_length and content_length.isdigit() and int(content_length) > max_bytes:
                raise OversizedResponseError(f"Response from {url} exceeds limit of {max_bytes} bytes")

            chunks = bytearray()
            async for chunk in response.aiter_bytes():
                chunks.extend(chunk)
                if len(chunks) > max_bytes:
                    raise OversizedResponseError(f"Response size exceeds limit of {max_bytes} bytes")
            return bytes(chunks)
    except httpx.HTTPStatusError as e:
        raise FetchError(f"GET {url} returned HTTP {e.response.status_code}") from e
    except httpx.HTTPError as e:
        raise FetchError(f"GET {url} failed: {e}") from e


async def safe_json_fetch(
    client: httpx.AsyncClient,
    url: str,
    headers: dict[str, str] | None = None,
    max_bytes: int = DEFAULT_MAX_BYTES,
) -> dict[str, Any]:
    """
    Fetches a URL and parses the body as a JSON object.

    Raises:
        FetchError: On network, status, size or parse errors, or if the body is not a JSON object.
    """
    body = await safe_fetch(client, url, headers=headers, max_bytes=max_bytes)
    try:
        data = json.loads(body)
    except ValueError as e:
        raise FetchError(f"Malformed JSON from {url}: {e}") from e
    if not isinstance(data, dict):
        raise FetchError(f"Expected a JSON object from {url}, got {type(data).__name__}")
    return data
