"""
Configuration for DarkJS Hunter.
Static crawl limits live in Config; user-editable scan Settings are cached by SettingsManager
and refreshed whenever the settings store reports a change.
"""

from dataclasses import dataclass, field, replace
from typing import Dict, Optional, Tuple, Any

from darkjs.core.logger import logger


@dataclass
class CrawlConfig:
    max_depth: int = 2
    max_extra_fetch: int = 25
    max_script_bytes: int = int(1.5 * 1024 * 1024)
    max_page_bytes: int = 5 * 1024 * 1024
    fetch_timeout: float = 15.0
    user_agent: str = "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0 Safari/537.36"


@dataclass
class StorageConfig:
    max_entries: int = 200
    preview_length: int = 80


@dataclass
class Config:
    output_dir: str = "darkjs_output"
    max_findings: int = 5000
    crawl: CrawlConfig = field(default_factory=CrawlConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)


def get_default_config() -> Config:
    return Config()


SETTINGS_FLAGS = {
    "enableDom": "enable_dom",
    "enableStorage": "enable_storage",
    "enableSourceMaps": "enable_source_maps",
    "enableNetwork": "enable_network",
    "enableRuntime": "enable_runtime",
}


@dataclass(frozen=True)
class Settings:
    enable_dom: bool = True
    enable_storage: bool = True
    enable_source_maps: bool = True
    enable_network: bool = True
    enable_runtime: bool = True
    allowlist: Tuple[str, ...] = ()
    denylist: Tuple[str, ...] = ()

    def to_dict(self) -> dict:
        data = {wire: getattr(self, attr) for wire, attr in SETTINGS_FLAGS.items()}
        data["allowlist"] = list(self.allowlist)
        data["denylist"] = list(self.denylist)
        return data

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "Settings":
        if not data:
            return cls()

        values: Dict[str, Any] = {}
        for wire, attr in SETTINGS_FLAGS.items():
            if wire in data:
                values[attr] = bool(data[wire])

        for name in ("allowlist", "denylist"):
            patterns = data.get(name)
            if patterns is None:
                continue
            if isinstance(patterns, str):
                patterns = [patterns]
            # Non-string entries are kept so the filter engine can reject them individually.
            values[name] = tuple(patterns)

        return cls(**values)


class SettingsManager:
    """Process-wide Settings handle.

    The first get() loads from the store (falling back to defaults), later calls
    return the cached value. The store's change notification refreshes the cache,
    and reload() forces a fresh read.
    """

    def __init__(self, settings_store):
        self.store = settings_store
        self._cached: Optional[Settings] = None
        self.store.subscribe(self._on_change)

    def _on_change(self, data: Optional[dict]):
        self._cached = Settings.from_dict(data)
        logger.debug("Settings changed, cache refreshed")

    async def get(self) -> Settings:
        if self._cached is None:
            await self.reload()
        return self._cached

    async def reload(self) -> Settings:
        data = await self.store.get()
        self._cached = Settings.from_dict(data)
        return self._cached

    async def update(self, **changes) -> Settings:
        current = await self.get()
        for name in ("allowlist", "denylist"):
            if name in changes:
                changes[name] = tuple(changes[name])
        updated = replace(current, **changes)
        await self.store.set(updated.to_dict())
        self._cached = updated
        return updated
