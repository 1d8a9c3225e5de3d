"""
Page source.
A PageSnapshot is the rendered state of one subject: markup, storage surfaces and cookies.
Hosts can hand one in directly, load it from a JSON file, or let HttpPageSource fetch the page.
"""

import asyncio
import json
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import aiohttp
from bs4 import BeautifulSoup

from darkjs.core.config import CrawlConfig
from darkjs.core.errors import PageSourceError
from darkjs.core.logger import logger
from darkjs.core.normalizer import is_data_uri, is_http_url, resolve_reference
from darkjs.models import ScriptReference


def parse_cookie_header(header: str) -> Dict[str, str]:
    cookies = {}
    for part in header.split(';'):
        if '=' not in part:
            continue
        name, value = part.split('=', 1)
        name = name.strip()
        if name:
            cookies[name] = value.strip()
    return cookies


@dataclass
class PageSnapshot:
    url: str
    html: str = ""
    title: str = ""
    local_storage: Dict[str, str] = field(default_factory=dict)
    session_storage: Dict[str, str] = field(default_factory=dict)
    cookies: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self):
        if not self.title and self.html:
            soup = BeautifulSoup(self.html, 'html.parser')
            if soup.title and soup.title.string:
                self.title = soup.title.string.strip()

    @classmethod
    def from_dict(cls, data: dict) -> "PageSnapshot":
        cookies = data.get('cookies') or {}
        if isinstance(cookies, str):
            cookies = parse_cookie_header(cookies)

        return cls(
            url=data.get('url', ''),
            html=data.get('html', ''),
            title=data.get('title', ''),
            local_storage={str(k): str(v) for k, v in (data.get('localStorage') or {}).items()},
            session_storage={str(k): str(v) for k, v in (data.get('sessionStorage') or {}).items()},
            cookies={str(k): str(v) for k, v in cookies.items()}
        )

    def to_dict(self) -> dict:
        return {
            'url': self.url,
            'title': self.title,
            'html': self.html,
            'localStorage': self.local_storage,
            'sessionStorage': self.session_storage,
            'cookies': self.cookies
        }


def load_snapshot_file(filepath: str) -> PageSnapshot:
    try:
        with open(filepath, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise PageSourceError(f"Cannot read snapshot {filepath}: {e}")

    if not isinstance(data, dict) or not data.get('url'):
        raise PageSourceError(f"Snapshot {filepath} has no page url")

    return PageSnapshot.from_dict(data)


def enumerate_root_references(snapshot: PageSnapshot) -> List[ScriptReference]:
    """Script elements of the document, in document order."""
    soup = BeautifulSoup(snapshot.html or "", 'html.parser')
    roots = []

    for index, script in enumerate(soup.find_all('script')):
        src = (script.get('src') or '').strip()
        if src:
            if is_data_uri(src):
                continue
            url = resolve_reference(snapshot.url, src)
            if url is not None and is_http_url(url):
                roots.append(ScriptReference(url=url, index=index))
            continue

        text = script.string if script.string is not None else script.get_text()
        if text and text.strip():
            roots.append(ScriptReference(inline_text=text, index=index))

    return roots


class HttpPageSource:
    """Builds a snapshot by fetching the page. Storage surfaces are empty; cookies come from the response."""

    CHUNK_SIZE = 64 * 1024

    def __init__(self, config: Optional[CrawlConfig] = None):
        self.config = config or CrawlConfig()
        self.max_bytes = self.config.max_page_bytes

    async def _read_limited(self, response, url: str) -> bytes:
        if response.content_length is not None and response.content_length > self.max_bytes:
            raise PageSourceError(f"Page {url} too large ({response.content_length} bytes)")

        body = bytearray()
        async for chunk in response.content.iter_chunked(self.CHUNK_SIZE):
            body.extend(chunk)
            if len(body) > self.max_bytes:
                raise PageSourceError(f"Page {url} larger than {self.max_bytes} bytes")
        return bytes(body)

    async def load(self, url: str, session: aiohttp.ClientSession) -> PageSnapshot:
        timeout = aiohttp.ClientTimeout(total=self.config.fetch_timeout)
        headers = {
            'User-Agent': self.config.user_agent,
            'Accept': 'text/html,application/xhtml+xml,*/*;q=0.8',
        }

        try:
            async with session.get(url, timeout=timeout, headers=headers, allow_redirects=True) as response:
                if response.status >= 400:
                    raise PageSourceError(f"HTTP {response.status} for {url}")
                body = await self._read_limited(response, url)
                charset = response.charset or 'utf-8'
                final_url = str(response.url)
                cookies = {name: morsel.value for name, morsel in response.cookies.items()}
        except aiohttp.ClientError as e:
            raise PageSourceError(f"Request failed for {url}: {str(e)[:200]}")
        except asyncio.TimeoutError:
            raise PageSourceError(f"Timeout loading {url}")

        try:
            html = body.decode(charset, errors='replace')
        except LookupError:
            html = body.decode('utf-8', errors='replace')

        logger.debug(f"Loaded {final_url} ({len(html)} chars)")
        return PageSnapshot(url=final_url, html=html, cookies=cookies)
