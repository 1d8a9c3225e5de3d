"""
Auxiliary page extraction, independent of the script graph.
DOM attributes and markup URLs, plus localStorage, sessionStorage and cookie entries.
"""

import re
from typing import List, Optional, Tuple

from bs4 import BeautifulSoup

from darkjs.analyzers.detectors import DetectorCatalog, is_endpoint_shaped
from darkjs.collectors.page_source import PageSnapshot
from darkjs.core.config import StorageConfig
from darkjs.core.normalizer import is_skipped_attribute
from darkjs.models import Finding, FindingCategory


class PageExtractor:

    DOM_SELECTORS = [
        ('a', 'href'),
        ('link', 'href'),
        ('form', 'action'),
        ('iframe', 'src'),
        ('frame', 'src'),
        ('img', 'src'),
        ('script', 'src'),
    ]

    MARKUP_URL_PATTERN = re.compile(r'https?://[^\s"\'<>\\]+')

    def __init__(self, catalog: Optional[DetectorCatalog] = None, config: Optional[StorageConfig] = None):
        self.catalog = catalog or DetectorCatalog()
        self.config = config or StorageConfig()

    def extract_dom(self, snapshot: PageSnapshot) -> List[Finding]:
        if not snapshot.html:
            return []

        findings = []
        soup = BeautifulSoup(snapshot.html, 'html.parser')

        for tag, attr in self.DOM_SELECTORS:
            source = f"dom:{tag}[{attr}]"
            for element in soup.find_all(tag):
                value = element.get(attr)
                if not isinstance(value, str):
                    continue
                value = value.strip()
                if is_skipped_attribute(value):
                    continue
                category = self._reference_category(value)
                if category is None:
                    continue
                findings.append(Finding(category, value, source))
                if is_endpoint_shaped(value):
                    findings.append(Finding(FindingCategory.API_ENDPOINT, value, source))

        for match in self.MARKUP_URL_PATTERN.finditer(snapshot.html):
            findings.append(Finding(FindingCategory.URL, match.group(0).strip(), "dom:html"))

        return findings

    def _reference_category(self, value: str) -> Optional[FindingCategory]:
        lower = value.lower()
        if lower.startswith(('http://', 'https://', '//')):
            return FindingCategory.URL
        if value.startswith('/'):
            return FindingCategory.ROUTE
        return None

    def _preview(self, value: str) -> str:
        limit = self.config.preview_length
        if len(value) <= limit:
            return value
        return value[:limit] + "..."

    def _storage_findings(self, entries: List[Tuple[str, str]], source_for) -> List[Finding]:
        findings = []
        for key, value in entries:
            source = source_for(key)
            findings.append(Finding(FindingCategory.STORAGE_ITEM, f"{key}={self._preview(value)}", source))
            for secret in self.catalog.secret_matches(value):
                findings.append(Finding(FindingCategory.SECRET, secret, source))
        return findings

    def extract_storage(self, snapshot: PageSnapshot) -> List[Finding]:
        limit = self.config.max_entries
        findings = []

        findings.extend(self._storage_findings(
            list(snapshot.local_storage.items())[:limit], lambda key: f"localStorage:{key}"
        ))
        findings.extend(self._storage_findings(
            list(snapshot.session_storage.items())[:limit], lambda key: f"sessionStorage:{key}"
        ))
        findings.extend(self._storage_findings(
            list(snapshot.cookies.items()), lambda key: "cookie"
        ))

        return findings
