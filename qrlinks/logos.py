"""Logo reference resolution.

Turns a stored logo reference into something an SVG ``<image>`` can embed
without further network access:

- ``data:`` URIs pass through,
- ``/uploads/...`` paths (bare or on any host) are read from the uploads
  directory and inlined as base64 data URIs,
- other http(s) URLs are fetched with httpx and inlined when remote fetching
  is enabled; only hosts resolving to public addresses are contacted,
  redirects are not followed and the body is capped at ``LOGO_MAX_BYTES``
  while streaming.

``resolve`` never raises; on any failure the original reference is returned.
"""

import asyncio
import base64
import ipaddress
import logging
import mimetypes
import socket
from pathlib import Path
from urllib.parse import unquote, urlsplit

import httpx

from qrlinks.config import Settings

__all__ = ["LogoResolver"]

logger = logging.getLogger(__name__)

_MIME_BY_SUFFIX = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".svg": "image/svg+xml",
}


class LogoResolver:
    def __init__(self, settings: Settings, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._uploads_dir = Path(settings.UPLOADS_DIR)
        self._uploads_prefix = settings.UPLOADS_URL_PREFIX
        self._fetch_remote = settings.LOGO_FETCH_REMOTE
        self._timeout = settings.LOGO_FETCH_TIMEOUT_SECONDS
        self._max_bytes = settings.LOGO_MAX_BYTES
        self._transport = transport

    async def resolve(self, reference: str | None, allow_remote: bool = True) -> str | None:
        """Return an embeddable href for ``reference``.

        Remote URLs are only fetched when ``LOGO_FETCH_REMOTE`` is on and the
        caller passes ``allow_remote``; unauthenticated previews never do.
        """
        if not reference:
            return reference
        try:
            if reference.startswith("data:"):
                return reference

            upload_path = self._upload_path(reference)
            if upload_path is not None:
                return await self._inline_upload(upload_path)

            if allow_remote and self._fetch_remote and reference.lower().startswith(("http://", "https://")):
                return await self._inline_remote(reference)

            return reference
        except Exception as exc:
            logger.warning(f"Logo resolution failed for {reference[:80]}: {exc}")
            return reference

    def _upload_path(self, reference: str) -> str | None:
        if reference.startswith(self._uploads_prefix):
            return unquote(reference)
        if reference.lower().startswith(("http://", "https://")):
            path = urlsplit(reference).path
            if path.startswith(self._uploads_prefix):
                return unquote(path)
        return None

    async def _inline_upload(self, upload_path: str) -> str:
        relative = upload_path[len(self._uploads_prefix):]
        root = self._uploads_dir.resolve()
        target = (root / relative).resolve()
        if root not in target.parents:
            raise ValueError(f"Upload path escapes the uploads directory: {upload_path}")

        content = await asyncio.to_thread(target.read_bytes)
        if len(content) > self._max_bytes:
            raise ValueError(f"Upload is larger than {self._max_bytes} bytes")
        mime = _MIME_BY_SUFFIX.get(target.suffix.lower()) or mimetypes.guess_type(target.name)[0]
        return _data_uri(mime or "application/octet-stream", content)

    async def _inline_remote(self, url: str) -> str:
        parts = urlsplit(url)
        if not parts.hostname:
            raise ValueError("Remote logo URL has no host")
        await _require_public_host(parts.hostname, parts.port or (443 if parts.scheme == "https" else 80))

        async with httpx.AsyncClient(
            timeout=self._timeout, follow_redirects=False, transport=self._transport
        ) as client:
            async with client.stream("GET", url) as response:
                response.raise_for_status()
                mime = response.headers.get("content-type", "").split(";")[0].strip().lower()
                if not mime.startswith("image/"):
                    raise ValueError(f"Remote logo is not an image (content-type {mime or 'missing'})")

                content = bytearray()
                async for chunk in response.aiter_bytes():
                    content.extend(chunk)
                    if len(content) > self._max_bytes:
                        raise ValueError(f"Remote logo is larger than {self._max_bytes} bytes")
        return _data_uri(mime, bytes(content))


async def _require_public_host(host: str, port: int) -> None:
    """Raise ``ValueError`` unless every address ``host`` resolves to is globally routable."""
    try:
        addresses = [ipaddress.ip_address(host)]
    except ValueError:
        infos = await asyncio.get_running_loop().getaddrinfo(host, port, type=socket.SOCK_STREAM)
        addresses = [ipaddress.ip_address(info[4][0]) for info in infos]

    if not addresses:
        raise ValueError(f"Remote logo host {host} did not resolve")
    for address in addresses:
        if not address.is_global:
            raise ValueError(f"Remote logo host {host} resolves to non-public address {address}")


def _data_uri(mime: str, content: bytes) -> str:
    return f"data:{mime};base64,{base64.b64encode(content).decode('ascii')}"
