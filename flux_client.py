"""
HTTP Request Execution
======================
One HttpClient per worker: a long-lived aiohttp session with connection
pooling, reused for every request the worker sends.

Any HTTP status is returned as a response. Transport problems raise
TransportError, multipart problems raise MultipartError; callers record
both as failed outcomes.
"""

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, List, Dict

import aiohttp

from flux_config import MultipartPart
from flux_errors import MultipartError, TransportError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECS = 30.0
POOL_LIMIT_PER_HOST = 100


@dataclass
class HttpResponse:
    status: int
    body: bytes = b""

    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")


class HttpClient:
    """
    Request-execution capability backed by aiohttp.

    The session is opened lazily on first use, inside the running event loop,
    and must be released with close().
    """

    def __init__(self, timeout: float = DEFAULT_TIMEOUT_SECS, verify_ssl: bool = True):
        self.timeout = aiohttp.ClientTimeout(total=timeout, connect=10)
        self.verify_ssl = verify_ssl
        self._session: Optional[aiohttp.ClientSession] = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(
                limit_per_host=POOL_LIMIT_PER_HOST,
                keepalive_timeout=30,
                ssl=self.verify_ssl,
            )
            self._session = aiohttp.ClientSession(timeout=self.timeout, connector=connector)
        return self._session

    async def execute(
        self,
        method: str,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        body: Optional[str] = None,
        multipart: Optional[List[MultipartPart]] = None,
    ) -> HttpResponse:
        """
        Send one request and read the whole response body.
        Multipart parts take precedence over ``body``.
        """
        if multipart is not None:
            data = await build_form(multipart)
        else:
            data = body

        session = self._get_session()
        try:
            async with session.request(
                method,
                url,
                headers=headers or None,
                data=data,
            ) as response:
                content = await response.read()
                return HttpResponse(status=response.status, body=content)
        except asyncio.TimeoutError:
            raise TransportError(f"Request timed out after {self.timeout.total}s: {method} {url}") from None
        except aiohttp.ClientConnectorError as e:
            raise TransportError(f"Connection error: {e}") from e
        except aiohttp.ClientError as e:
            raise TransportError(f"{type(e).__name__}: {e}") from e
        except ValueError as e:
            # aiohttp rejects malformed methods and URLs with ValueError
            raise TransportError(f"Invalid request: {e}") from e

    async def close(self):
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None


async def build_form(parts: List[MultipartPart]) -> aiohttp.FormData:
    """
    Build a multipart form from configured parts.
    File contents are read at send time; nothing touches the network here.
    """
    form = aiohttp.FormData()

    for part in parts:
        if part.part_type == "file":
            if part.path is None:
                raise MultipartError(f"Multipart file part '{part.name}' has no path")
            file_path = Path(part.path)
            if not file_path.exists():
                raise MultipartError(f"File not found: {part.path}")
            try:
                content = await asyncio.to_thread(file_path.read_bytes)
            except OSError as e:
                raise MultipartError(f"Cannot read file {part.path}: {e}") from e
            form.add_field(part.name, content, filename=file_path.name or "file")
        elif part.part_type == "field":
            if part.value is not None:
                form.add_field(part.name, part.value)
        else:
            raise MultipartError(f"Unknown multipart type: {part.part_type}")

    return form
