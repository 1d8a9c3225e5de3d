"""
Main scan engine.
Entry points a host calls: scan a subject (crawl + DOM/storage extraction, filtered and merged
into the store) and record an externally observed network/runtime request.
"""

from typing import Optional

import aiohttp

from darkjs.analyzers.detectors import DetectorCatalog, endpoint_category
from darkjs.analyzers.filter_engine import filter_findings, is_visible
from darkjs.collectors.page_extractor import PageExtractor
from darkjs.collectors.page_source import HttpPageSource, PageSnapshot, enumerate_root_references
from darkjs.collectors.source_fetcher import SourceFetcher
from darkjs.core.config import Config, SettingsManager, get_default_config
from darkjs.core.errors import PageSourceError
from darkjs.core.logger import logger
from darkjs.models import Finding, ScanReport
from darkjs.pipelines.crawl import CrawlRunner
from darkjs.services.datastore import AggregationStore, MemoryStore, SettingsStore


EVENT_KINDS = ("network", "runtime")


class ScanEngine:

    def __init__(self, config: Config = None, store: AggregationStore = None,
                 settings_manager: SettingsManager = None, page_source=None,
                 fetcher=None, silent_mode: bool = False):
        self.config = config or get_default_config()
        self.silent_mode = silent_mode

        if store is None:
            store = AggregationStore(MemoryStore(), max_findings=self.config.max_findings)
        self.store = store

        if settings_manager is None:
            settings_manager = SettingsManager(SettingsStore(store.kv))
        self.settings_manager = settings_manager

        self.page_source = page_source or HttpPageSource(self.config.crawl)
        self.catalog = DetectorCatalog()
        self.extractor = PageExtractor(self.catalog, self.config.storage)
        self._fetcher = fetcher

    async def scan_subject(self, subject_id: str, url: Optional[str] = None,
                           snapshot: Optional[PageSnapshot] = None) -> ScanReport:
        subject_id = str(subject_id)

        if self._fetcher is not None:
            return await self._scan(subject_id, url, snapshot, self._fetcher, None)

        headers = {'User-Agent': self.config.crawl.user_agent}
        async with aiohttp.ClientSession(headers=headers) as session:
            fetcher = SourceFetcher(session, self.config.crawl)
            return await self._scan(subject_id, url, snapshot, fetcher, session)

    async def _scan(self, subject_id: str, url: Optional[str], snapshot: Optional[PageSnapshot],
                    fetcher, session) -> ScanReport:
        settings = await self.settings_manager.get()

        try:
            if snapshot is None:
                if not url:
                    raise PageSourceError("No page url or snapshot supplied")
                snapshot = await self.page_source.load(url, session)
        except PageSourceError as e:
            logger.warning(f"Scan of {subject_id} failed, store left unchanged: {e}")
            return ScanReport(subject_id=subject_id, page_url=url or "", failed=True, error=str(e))

        if not self.silent_mode:
            logger.info(f"Scanning {snapshot.url} as subject {subject_id}")

        roots = enumerate_root_references(snapshot)
        runner = CrawlRunner(fetcher, self.catalog, self.config.crawl, silent_mode=self.silent_mode)
        crawl = await runner.run(roots, snapshot.url, settings)

        raw = list(crawl.findings)
        if settings.enable_dom:
            raw.extend(self.extractor.extract_dom(snapshot))
        if settings.enable_storage:
            raw.extend(self.extractor.extract_storage(snapshot))

        visible = filter_findings(raw, snapshot.url, settings)

        await self.store.merge(subject_id, visible, page_url=snapshot.url, page_title=snapshot.title)

        if not self.silent_mode:
            logger.info(f"{len(visible)} findings stored for {subject_id} "
                        f"({len(raw) - len(visible)} filtered out)")

        return ScanReport(
            subject_id=subject_id,
            page_url=snapshot.url,
            page_title=snapshot.title,
            findings=visible,
            filtered_out=len(raw) - len(visible),
            outcomes=crawl.outcomes
        )

    async def record_external_finding(self, subject_id: str, url: str, method: str = "GET",
                                      status: int = 0, kind: str = "network") -> Optional[Finding]:
        subject_id = str(subject_id)
        if kind not in EVENT_KINDS:
            raise ValueError(f"Unknown event kind: {kind}")

        url = (url or "").strip()
        if not url:
            return None

        settings = await self.settings_manager.get()
        if kind == "network" and not settings.enable_network:
            return None
        if kind == "runtime" and not settings.enable_runtime:
            return None

        if kind == "network":
            source = f"network:{status}"
        else:
            source = f"runtime:{(method or 'GET').upper()}:{status}"

        finding = Finding(endpoint_category(url), url, source)

        record = await self.store.get(subject_id)
        subject_url = record.page_url if record else ""
        if not is_visible(finding, subject_url, settings):
            logger.debug(f"Event {url} for {subject_id} filtered out")
            return None

        await self.store.append(subject_id, [finding])
        return finding

    async def close_subject(self, subject_id: str):
        await self.store.delete(str(subject_id))
