"""
Source fetcher.
Returns the text behind a script reference, or an explicit FetchError describing why it could not.
Payloads above the size ceiling are dropped whole, never truncated. Nothing is raised to callers.
"""

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import aiohttp

from darkjs.core.config import CrawlConfig
from darkjs.core.logger import logger
from darkjs.models import ScriptReference


class FetchErrorKind(Enum):
    NETWORK = "network"
    TIMEOUT = "timeout"
    HTTP_STATUS = "http_status"
    NON_TEXT = "non_text"
    DECODE = "decode"
    OVERSIZE = "oversize"


@dataclass
class FetchError:
    kind: FetchErrorKind
    detail: str = ""

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.detail}" if self.detail else self.kind.value


@dataclass
class FetchResult:
    reference: ScriptReference
    text: Optional[str] = None
    error: Optional[FetchError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class SourceFetcher:

    TEXT_CONTENT_MARKERS = (
        'text/', 'javascript', 'ecmascript', 'json', 'xml', 'typescript', 'sourcemap',
    )

    CHUNK_SIZE = 64 * 1024

    def __init__(self, session: aiohttp.ClientSession, config: Optional[CrawlConfig] = None):
        self.session = session
        self.config = config or CrawlConfig()
        self.max_bytes = self.config.max_script_bytes

    async def fetch(self, reference: ScriptReference) -> FetchResult:
        if reference.is_inline:
            return self._check_inline(reference)
        return await self._fetch_remote(reference)

    def _check_inline(self, reference: ScriptReference) -> FetchResult:
        text = reference.inline_text or ""
        size = len(text.encode('utf-8', errors='replace'))
        if size > self.max_bytes:
            return self._failed(reference, FetchErrorKind.OVERSIZE, f"{size} bytes")
        return FetchResult(reference=reference, text=text)

    def _is_text_type(self, content_type: str) -> bool:
        content_type = content_type.lower()
        return any(marker in content_type for marker in self.TEXT_CONTENT_MARKERS)

    def _failed(self, reference: ScriptReference, kind: FetchErrorKind, detail: str = "") -> FetchResult:
        error = FetchError(kind=kind, detail=detail)
        logger.debug(f"Fetch failed for {reference.key}: {error}")
        return FetchResult(reference=reference, error=error)

    async def _read_limited(self, response) -> Optional[bytes]:
        body = bytearray()
        async for chunk in response.content.iter_chunked(self.CHUNK_SIZE):
            body.extend(chunk)
            if len(body) > self.max_bytes:
                return None
        return bytes(body)

    async def _fetch_remote(self, reference: ScriptReference) -> FetchResult:
        url = reference.url
        timeout = aiohttp.ClientTimeout(total=self.config.fetch_timeout)
        headers = {
            'User-Agent': self.config.user_agent,
            'Accept': '*/*',
        }

        try:
            async with self.session.get(url, timeout=timeout, headers=headers, allow_redirects=True) as response:
                if response.status < 200 or response.status >= 300:
                    return self._failed(reference, FetchErrorKind.HTTP_STATUS, f"HTTP {response.status}")

                content_type = response.headers.get('Content-Type', '')
                if content_type and not self._is_text_type(content_type):
                    return self._failed(reference, FetchErrorKind.NON_TEXT, content_type)

                content_length = response.content_length
                if content_length is not None and content_length > self.max_bytes:
                    return self._failed(reference, FetchErrorKind.OVERSIZE, f"{content_length} bytes")

                body = await self._read_limited(response)
                if body is None:
                    return self._failed(reference, FetchErrorKind.OVERSIZE, f"more than {self.max_bytes} bytes")

                charset = response.charset or 'utf-8'

        except asyncio.TimeoutError:
            return self._failed(reference, FetchErrorKind.TIMEOUT, f"{self.config.fetch_timeout}s")
        except aiohttp.ClientError as e:
            return self._failed(reference, FetchErrorKind.NETWORK, str(e)[:200])

        try:
            text = body.decode(charset)
        except (UnicodeDecodeError, LookupError) as e:
            return self._failed(reference, FetchErrorKind.DECODE, str(e)[:200])

        if '\x00' in text:
            return self._failed(reference, FetchErrorKind.NON_TEXT, "binary body")

        return FetchResult(reference=reference, text=text)
