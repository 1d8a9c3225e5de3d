"""
Data models for DarkJS Hunter.
Findings, per-subject records, script references and crawl outcomes.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Tuple
from enum import Enum


EXTERNAL_SOURCE_PREFIXES = ("network:", "runtime:")


class FindingCategory(Enum):
    ROUTE = "Route"
    URL = "URL"
    API_ENDPOINT = "ApiEndpoint"
    SECRET = "Secret"
    STORAGE_ITEM = "StorageItem"
    ENV_LEAK = "EnvLeak"
    GRAPHQL = "GraphQL"
    EMAIL = "Email"
    UUID = "UUID"
    PHONE = "Phone"
    HOSTNAME = "Hostname"


ENDPOINT_CATEGORIES = (FindingCategory.ROUTE, FindingCategory.URL, FindingCategory.API_ENDPOINT)
FILTER_EXEMPT_CATEGORIES = (FindingCategory.SECRET, FindingCategory.STORAGE_ITEM, FindingCategory.ENV_LEAK)


@dataclass(frozen=True)
class Finding:
    category: FindingCategory
    value: str
    source: str

    @property
    def key(self) -> Tuple[str, str]:
        return (self.category.value, self.value)

    @property
    def is_external(self) -> bool:
        return self.source.startswith(EXTERNAL_SOURCE_PREFIXES)

    def to_tuple(self) -> list:
        return [self.category.value, self.value, self.source]

    @classmethod
    def from_tuple(cls, data) -> "Finding":
        category, value, source = data
        return cls(category=FindingCategory(category), value=value, source=source)

    def to_dict(self) -> dict:
        return {
            "type": self.category.value,
            "value": self.value,
            "source": self.source
        }


@dataclass
class SubjectRecord:
    subject_id: str
    findings: List[Finding] = field(default_factory=list)
    page_url: str = ""
    page_title: str = ""
    last_scanned_at: int = 0

    def to_dict(self) -> dict:
        return {
            "subjectId": self.subject_id,
            "findings": [f.to_tuple() for f in self.findings],
            "pageUrl": self.page_url,
            "pageTitle": self.page_title,
            "lastScannedAt": self.last_scanned_at
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SubjectRecord":
        return cls(
            subject_id=str(data.get("subjectId", "")),
            findings=[Finding.from_tuple(f) for f in data.get("findings", [])],
            page_url=data.get("pageUrl") or "",
            page_title=data.get("pageTitle") or "",
            last_scanned_at=int(data.get("lastScannedAt") or 0)
        )


@dataclass(frozen=True)
class ScriptReference:
    """A crawl node: either inline text from the page or a remote URL."""
    url: Optional[str] = None
    inline_text: Optional[str] = None
    index: int = 0

    @property
    def is_inline(self) -> bool:
        return self.url is None

    @property
    def key(self) -> str:
        return self.url if self.url is not None else f"inline:{self.index}"

    @property
    def provenance(self) -> str:
        return self.url if self.url is not None else "inline-script"


class NodeState(Enum):
    QUEUED = "queued"
    FETCHING = "fetching"
    SCANNED = "scanned"
    FETCH_FAILED = "fetch_failed"
    SKIPPED_OVERSIZE = "skipped_oversize"
    SKIPPED_ALREADY_VISITED = "skipped_already_visited"
    SKIPPED_BUDGET_EXHAUSTED = "skipped_budget_exhausted"


@dataclass
class NodeOutcome:
    key: str
    depth: int
    state: NodeState
    kind: str = "script"
    findings: int = 0
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "depth": self.depth,
            "state": self.state.value,
            "kind": self.kind,
            "findings": self.findings,
            "error": self.error
        }


@dataclass
class CrawlResult:
    findings: List[Finding] = field(default_factory=list)
    outcomes: List[NodeOutcome] = field(default_factory=list)
    fetch_count: int = 0

    def outcomes_in(self, state: NodeState) -> List[NodeOutcome]:
        return [o for o in self.outcomes if o.state == state]


@dataclass
class ScanReport:
    subject_id: str
    page_url: str = ""
    page_title: str = ""
    failed: bool = False
    error: Optional[str] = None
    findings: List[Finding] = field(default_factory=list)
    filtered_out: int = 0
    outcomes: List[NodeOutcome] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "subjectId": self.subject_id,
            "pageUrl": self.page_url,
            "pageTitle": self.page_title,
            "failed": self.failed,
            "error": self.error,
            "findings": [f.to_tuple() for f in self.findings],
            "filteredOut": self.filtered_out,
            "nodes": [o.to_dict() for o in self.outcomes]
        }
