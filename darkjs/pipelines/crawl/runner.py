"""
Crawl Runner - bounded traversal of a page's script reference graph.
Roots are the document's script elements. Each node is fetched at most once, classified,
and (below the depth cap) mined for sourcemap links and module references.
Nodes are processed one at a time from an explicit FIFO worklist.
"""

import base64
import json
import re
from collections import deque
from dataclasses import dataclass, field
from typing import List, Optional, Set, Deque, Tuple
from urllib.parse import unquote

from darkjs.analyzers.detectors import DetectorCatalog
from darkjs.collectors.source_fetcher import FetchErrorKind, FetchResult
from darkjs.core.config import CrawlConfig, Settings
from darkjs.core.errors import ParseError
from darkjs.core.logger import logger
from darkjs.core.normalizer import is_bare_specifier, is_data_uri, is_http_url, resolve_reference
from darkjs.models import (
    CrawlResult, Finding, NodeOutcome, NodeState, ScriptReference
)


@dataclass
class CrawlState:
    queue: Deque[Tuple[ScriptReference, int, str]] = field(default_factory=deque)
    visited: Set[str] = field(default_factory=set)
    sourcemap_visited: Set[str] = field(default_factory=set)
    fetch_budget_remaining: int = 0


class CrawlRunner:

    SOURCEMAP_PATTERNS = [
        re.compile(r'//[#@]\s*sourceMappingURL\s*=\s*([^\s\'"]+)'),
        re.compile(r'/\*[#@]\s*sourceMappingURL\s*=\s*([^\s*]+)\s*\*/'),
    ]

    MODULE_REFERENCE_PATTERNS = [
        re.compile(r'\bimport\s+(?:[\w$*{}\s,]+?\s+from\s+)?["\']([^"\'\n]+)["\']'),
        re.compile(r'\bexport\s+(?:\*(?:\s+as\s+[\w$]+)?|\{[^}]*\})\s+from\s+["\']([^"\'\n]+)["\']'),
        re.compile(r'\bimport\s*\(\s*["\']([^"\'\n]+)["\']\s*\)'),
        re.compile(r'\brequire\s*\(\s*["\']([^"\'\n]+)["\']\s*\)'),
        re.compile(r'\bimportScripts\s*\(\s*["\']([^"\'\n]+)["\']'),
    ]

    def __init__(self, fetcher, catalog: Optional[DetectorCatalog] = None,
                 config: Optional[CrawlConfig] = None, silent_mode: bool = True):
        self.fetcher = fetcher
        self.catalog = catalog or DetectorCatalog()
        self.config = config or CrawlConfig()
        self.silent_mode = silent_mode

    async def run(self, roots: List[ScriptReference], page_url: str,
                  settings: Optional[Settings] = None) -> CrawlResult:
        settings = settings or Settings()
        result = CrawlResult()
        state = CrawlState(fetch_budget_remaining=self.config.max_extra_fetch)

        for root in roots:
            state.queue.append((root, 0, root.provenance))

        while state.queue:
            reference, depth, provenance = state.queue.popleft()
            await self._process_node(reference, depth, provenance, page_url, settings, state, result)

        result.fetch_count = self.config.max_extra_fetch - state.fetch_budget_remaining

        if not self.silent_mode:
            scanned = len(result.outcomes_in(NodeState.SCANNED))
            logger.info(f"Crawl finished: {scanned} nodes scanned, {result.fetch_count} fetches, "
                        f"{len(result.findings)} raw findings")

        return result

    def _consume_budget(self, reference: ScriptReference, state: CrawlState) -> bool:
        if reference.is_inline:
            return True
        if state.fetch_budget_remaining <= 0:
            return False
        state.fetch_budget_remaining -= 1
        return True

    def _classify(self, text: str, provenance: str) -> List[Finding]:
        return [Finding(category, value, provenance) for category, value in self.catalog.classify(text)]

    @staticmethod
    def _failure_state(fetched: FetchResult) -> NodeState:
        if fetched.error.kind == FetchErrorKind.OVERSIZE:
            return NodeState.SKIPPED_OVERSIZE
        return NodeState.FETCH_FAILED

    async def _process_node(self, reference: ScriptReference, depth: int, provenance: str,
                            page_url: str, settings: Settings, state: CrawlState, result: CrawlResult):
        key = reference.key

        if key in state.visited:
            result.outcomes.append(NodeOutcome(key, depth, NodeState.SKIPPED_ALREADY_VISITED))
            return

        if not self._consume_budget(reference, state):
            result.outcomes.append(NodeOutcome(key, depth, NodeState.SKIPPED_BUDGET_EXHAUSTED))
            return

        state.visited.add(key)
        fetched = await self.fetcher.fetch(reference)

        if not fetched.ok:
            result.outcomes.append(NodeOutcome(key, depth, self._failure_state(fetched), error=str(fetched.error)))
            return

        text = fetched.text
        findings = self._classify(text, provenance)
        result.findings.extend(findings)
        result.outcomes.append(NodeOutcome(key, depth, NodeState.SCANNED, findings=len(findings)))

        if depth >= self.config.max_depth:
            return

        base_url = reference.url or page_url

        if settings.enable_source_maps and not self._looks_like_sourcemap(reference, text):
            await self._follow_sourcemaps(text, base_url, depth, state, result)

        for module_url in self.find_module_references(text, base_url):
            state.queue.append((ScriptReference(url=module_url), depth + 1, module_url))

    @staticmethod
    def _looks_like_sourcemap(reference: ScriptReference, text: str) -> bool:
        if reference.url and reference.url.split('?', 1)[0].endswith('.map'):
            return True
        head = text.lstrip()[:4096]
        return head.startswith('{') and '"mappings"' in head

    def find_sourcemap_urls(self, text: str, base_url: Optional[str]) -> List[str]:
        found = []
        for pattern in self.SOURCEMAP_PATTERNS:
            for match in pattern.finditer(text):
                raw = match.group(1).strip()
                resolved = raw if is_data_uri(raw) else resolve_reference(base_url, raw)
                if resolved is None:
                    logger.debug(f"Unresolvable sourcemap reference {raw!r}")
                    continue
                if (is_data_uri(resolved) or is_http_url(resolved)) and resolved not in found:
                    found.append(resolved)
        return found

    def find_module_references(self, text: str, base_url: Optional[str]) -> List[str]:
        matches = []
        for pattern in self.MODULE_REFERENCE_PATTERNS:
            for match in pattern.finditer(text):
                matches.append((match.start(), match.group(1).strip()))
        matches.sort(key=lambda item: item[0])

        resolved_urls = []
        for _, specifier in matches:
            if not specifier or is_data_uri(specifier) or is_bare_specifier(specifier):
                continue
            resolved = resolve_reference(base_url, specifier)
            if resolved is None:
                logger.debug(f"Unresolvable module reference {specifier!r}")
                continue
            if is_http_url(resolved) and resolved not in resolved_urls:
                resolved_urls.append(resolved)
        return resolved_urls

    async def _follow_sourcemaps(self, text: str, base_url: Optional[str], depth: int,
                                 state: CrawlState, result: CrawlResult):
        for map_url in self.find_sourcemap_urls(text, base_url):
            if map_url in state.sourcemap_visited:
                continue
            state.sourcemap_visited.add(map_url)

            if is_data_uri(map_url):
                map_text = decode_data_uri(map_url)
                provenance = "sourcemap:inline"
                key = "sourcemap:data-uri"
                if map_text is None:
                    result.outcomes.append(NodeOutcome(key, depth, NodeState.FETCH_FAILED, kind="sourcemap",
                                                       error="undecodable data URI"))
                    continue
            else:
                reference = ScriptReference(url=map_url)
                provenance = f"sourcemap:{map_url}"
                key = map_url
                if not self._consume_budget(reference, state):
                    result.outcomes.append(NodeOutcome(key, depth, NodeState.SKIPPED_BUDGET_EXHAUSTED,
                                                       kind="sourcemap"))
                    continue
                fetched = await self.fetcher.fetch(reference)
                if not fetched.ok:
                    result.outcomes.append(NodeOutcome(key, depth, self._failure_state(fetched),
                                                       kind="sourcemap", error=str(fetched.error)))
                    continue
                map_text = fetched.text

            try:
                sources = parse_sourcemap(map_text, key)
            except ParseError as e:
                logger.debug(str(e))
                result.outcomes.append(NodeOutcome(key, depth, NodeState.FETCH_FAILED, kind="sourcemap",
                                                   error=e.reason))
                continue

            findings = []
            for source_text in sources:
                findings.extend(self._classify(source_text, provenance))
            result.findings.extend(findings)
            result.outcomes.append(NodeOutcome(key, depth, NodeState.SCANNED, kind="sourcemap",
                                               findings=len(findings)))


def parse_sourcemap(text: str, location: str = "") -> List[str]:
    try:
        data = json.loads(text)
    except (json.JSONDecodeError, TypeError) as e:
        raise ParseError(location, f"invalid JSON ({e})")

    if not isinstance(data, dict):
        raise ParseError(location, "top level is not an object")

    contents = data.get('sourcesContent', [])
    if contents is None:
        return []
    if not isinstance(contents, list):
        raise ParseError(location, "sourcesContent is not a list")

    return [item for item in contents if isinstance(item, str) and item]


def decode_data_uri(uri: str) -> Optional[str]:
    header, sep, payload = uri.partition(',')
    if not sep:
        return None
    try:
        if header.lower().endswith(';base64'):
            return base64.b64decode(payload, validate=True).decode('utf-8')
        return unquote(payload)
    except (ValueError, UnicodeDecodeError):
        return None
