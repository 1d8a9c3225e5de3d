"""
URL helpers for script references, DOM attribute values and subject identifiers.
"""

import re
from typing import Optional
from urllib.parse import urljoin, urlparse


RELATIVE_PREFIXES = ("/", "./", "../")
SKIPPED_SCHEMES = ("javascript:", "mailto:", "tel:", "data:", "blob:", "about:")


def is_data_uri(value: str) -> bool:
    return value.strip().lower().startswith("data:")


def is_http_url(value: str) -> bool:
    try:
        return urlparse(value).scheme in ("http", "https")
    except ValueError:
        return False


def is_relative_reference(value: str) -> bool:
    return value.startswith(RELATIVE_PREFIXES)


def resolve_reference(base: Optional[str], value: str) -> Optional[str]:
    """Join value onto base; None when either side is not a parseable URL (e.g. "//[x")."""
    try:
        return urljoin(base, value) if base else value
    except ValueError:
        return None


def is_bare_specifier(value: str) -> bool:
    """Package names such as "react" or "@scope/pkg" that only a bundler can resolve."""
    if is_relative_reference(value):
        return False
    return not re.match(r'^[a-zA-Z][a-zA-Z0-9+.\-]*:', value)


def is_skipped_attribute(value: str) -> bool:
    lower = value.strip().lower()
    return not lower or lower.startswith("#") or lower.startswith(SKIPPED_SCHEMES)


def normalize_input(target: str) -> str:
    target = target.strip()
    if not re.match(r'^https?://', target, re.IGNORECASE):
        target = "https://" + target
    return target


def subject_id_for(url: str) -> str:
    try:
        parsed = urlparse(url)
        raw = (parsed.netloc + parsed.path).rstrip("/") or url
    except ValueError:
        raw = url
    return re.sub(r'[^a-zA-Z0-9]+', "_", raw).strip("_").lower()
