"""
DataStore services.
KeyValueStore backends (in-memory and JSON file), the namespaced settings store with
change notification, and the per-subject finding aggregation store.
"""

import asyncio
import json
import os
import shutil
import tempfile
import time
from typing import Any, Callable, Dict, List, Optional

from darkjs.core.logger import logger
from darkjs.models import Finding, SubjectRecord


class KeyValueStore:

    async def get(self, key: str) -> Optional[Any]:
        raise NotImplementedError

    async def set(self, key: str, value: Any):
        raise NotImplementedError

    async def delete(self, key: str):
        raise NotImplementedError

    async def keys(self) -> List[str]:
        raise NotImplementedError


class MemoryStore(KeyValueStore):

    def __init__(self):
        self._data: Dict[str, Any] = {}

    async def get(self, key: str) -> Optional[Any]:
        value = self._data.get(key)
        return json.loads(json.dumps(value)) if value is not None else None

    async def set(self, key: str, value: Any):
        self._data[key] = json.loads(json.dumps(value))

    async def delete(self, key: str):
        self._data.pop(key, None)

    async def keys(self) -> List[str]:
        return list(self._data.keys())


class JsonFileStore(KeyValueStore):
    """All keys in one JSON document, rewritten atomically on every change."""

    FILENAME = "store.json"

    def __init__(self, output_dir: str):
        self.output_dir = output_dir
        self.path = os.path.join(output_dir, self.FILENAME)

    def _ensure_output_dir(self):
        if not os.path.exists(self.output_dir):
            os.makedirs(self.output_dir, exist_ok=True)

    def _load(self) -> Dict[str, Any]:
        if not os.path.exists(self.path):
            return {}
        try:
            with open(self.path, 'r') as f:
                data = json.load(f)
        except (json.JSONDecodeError, IOError) as e:
            logger.warning(f"Store file {self.path} unreadable, starting empty: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    def _atomic_write(self, data: Dict[str, Any]):
        self._ensure_output_dir()

        fd, temp_path = tempfile.mkstemp(
            suffix='.json',
            prefix='.darkjs_store_',
            dir=self.output_dir
        )

        try:
            with os.fdopen(fd, 'w') as f:
                json.dump(data, f, indent=2)

            shutil.move(temp_path, self.path)
        except Exception:
            if os.path.exists(temp_path):
                os.unlink(temp_path)
            raise

    async def get(self, key: str) -> Optional[Any]:
        return self._load().get(key)

    async def set(self, key: str, value: Any):
        data = self._load()
        data[key] = value
        self._atomic_write(data)

    async def delete(self, key: str):
        data = self._load()
        if key in data:
            del data[key]
            self._atomic_write(data)

    async def keys(self) -> List[str]:
        return list(self._load().keys())


class SettingsStore:

    NAMESPACE = "settings"

    def __init__(self, kv: KeyValueStore):
        self.kv = kv
        self._subscribers: List[Callable[[Optional[dict]], None]] = []

    def subscribe(self, callback: Callable[[Optional[dict]], None]):
        self._subscribers.append(callback)

    async def get(self) -> Optional[dict]:
        return await self.kv.get(self.NAMESPACE)

    async def set(self, value: dict):
        await self.kv.set(self.NAMESPACE, value)
        for callback in self._subscribers:
            callback(value)


def now_millis() -> int:
    return int(time.time() * 1000)


class AggregationStore:
    """Per-subject finding records.

    Every read-modify-write runs under a per-subject asyncio.Lock, so event appends and
    crawl merges for the same subject never overwrite each other.
    """

    KEY_PREFIX = "tab:"

    def __init__(self, kv: KeyValueStore, max_findings: int = 5000):
        self.kv = kv
        self.max_findings = max_findings
        self._locks: Dict[str, asyncio.Lock] = {}

    def _key(self, subject_id: str) -> str:
        return f"{self.KEY_PREFIX}{subject_id}"

    def _lock_for(self, subject_id: str) -> asyncio.Lock:
        if subject_id not in self._locks:
            self._locks[subject_id] = asyncio.Lock()
        return self._locks[subject_id]

    def _truncate(self, findings: List[Finding]) -> List[Finding]:
        if len(findings) > self.max_findings:
            return findings[-self.max_findings:]
        return findings

    async def _load(self, subject_id: str) -> Optional[SubjectRecord]:
        data = await self.kv.get(self._key(subject_id))
        if not data:
            return None
        return SubjectRecord.from_dict(data)

    async def _save(self, record: SubjectRecord) -> SubjectRecord:
        record.findings = self._truncate(record.findings)
        await self.kv.set(self._key(record.subject_id), record.to_dict())
        return record

    async def get(self, subject_id: str) -> Optional[SubjectRecord]:
        return await self._load(str(subject_id))

    async def get_many(self, subject_ids: List[str]) -> List[SubjectRecord]:
        records = []
        for subject_id in subject_ids:
            record = await self.get(subject_id)
            if record is not None:
                records.append(record)
        return records

    async def subject_ids(self) -> List[str]:
        return [key[len(self.KEY_PREFIX):] for key in await self.kv.keys() if key.startswith(self.KEY_PREFIX)]

    async def all_records(self) -> List[SubjectRecord]:
        return await self.get_many(await self.subject_ids())

    async def append(self, subject_id: str, findings: List[Finding],
                     page_url: str = "", page_title: str = "") -> SubjectRecord:
        subject_id = str(subject_id)
        async with self._lock_for(subject_id):
            record = await self._load(subject_id) or SubjectRecord(subject_id, page_url=page_url, page_title=page_title)
            record.findings = record.findings + list(findings)
            return await self._save(record)

    async def _replace(self, subject_id: str, crawl_findings: List[Finding], external_findings: List[Finding],
                       page_url: str, page_title: str) -> SubjectRecord:
        record = SubjectRecord(
            subject_id=subject_id,
            findings=list(external_findings) + list(crawl_findings),
            page_url=page_url,
            page_title=page_title,
            last_scanned_at=now_millis()
        )
        return await self._save(record)

    async def replace_crawl_findings(self, subject_id: str, crawl_findings: List[Finding],
                                     external_findings: List[Finding],
                                     page_url: str = "", page_title: str = "") -> SubjectRecord:
        subject_id = str(subject_id)
        async with self._lock_for(subject_id):
            return await self._replace(subject_id, crawl_findings, external_findings, page_url, page_title)

    async def merge(self, subject_id: str, crawl_findings: List[Finding],
                    page_url: str = "", page_title: str = "") -> SubjectRecord:
        subject_id = str(subject_id)
        async with self._lock_for(subject_id):
            existing = await self._load(subject_id)
            external = [f for f in existing.findings if f.is_external] if existing else []
            return await self._replace(subject_id, crawl_findings, external, page_url, page_title)

    async def delete(self, subject_id: str):
        subject_id = str(subject_id)
        async with self._lock_for(subject_id):
            await self.kv.delete(self._key(subject_id))
