"""
Allow/deny filtering of findings.
Patterns are glob-like: '*' matches any sequence, everything else is literal.
Matching is a case-insensitive search, not anchored to the whole value.
"""

import re
from functools import lru_cache
from typing import List, Tuple

from darkjs.core.config import Settings
from darkjs.core.errors import ConfigError
from darkjs.core.logger import logger
from darkjs.core.normalizer import is_relative_reference, resolve_reference
from darkjs.models import Finding, FILTER_EXEMPT_CATEGORIES


NEVER_MATCHES = re.compile(r'(?!)')


def compile_pattern(pattern) -> "re.Pattern":
    if not isinstance(pattern, str):
        raise ConfigError(pattern, "pattern must be a string")

    regex = ".*".join(re.escape(part) for part in pattern.strip().split("*"))
    try:
        return re.compile(regex, re.IGNORECASE)
    except re.error as e:
        raise ConfigError(pattern, str(e))


def compile_patterns(patterns) -> Tuple["re.Pattern", ...]:
    patterns = tuple(patterns)
    try:
        hash(patterns)
    except TypeError:
        return _build_matchers(patterns)
    return _cached_matchers(patterns)


@lru_cache(maxsize=64)
def _cached_matchers(patterns: Tuple) -> Tuple["re.Pattern", ...]:
    return _build_matchers(patterns)


def _build_matchers(patterns: Tuple) -> Tuple["re.Pattern", ...]:
    compiled: List["re.Pattern"] = []
    for pattern in patterns:
        if isinstance(pattern, str) and not pattern.strip():
            continue
        try:
            compiled.append(compile_pattern(pattern))
        except ConfigError as e:
            logger.warning(f"{e} (ignored, matches nothing)")
            compiled.append(NEVER_MATCHES)
    return tuple(compiled)


def resolve_for_matching(value: str, subject_url: str) -> str:
    if subject_url and is_relative_reference(value):
        value = resolve_reference(subject_url, value) or value
    return value.lower()


def matches_any(value: str, patterns: Tuple) -> bool:
    return any(regex.search(value) for regex in compile_patterns(patterns))


def is_visible(finding: Finding, subject_url: str, settings: Settings) -> bool:
    if finding.category in FILTER_EXEMPT_CATEGORIES:
        return True

    resolved = resolve_for_matching(finding.value, subject_url)

    allow = compile_patterns(settings.allowlist)
    if allow and not any(regex.search(resolved) for regex in allow):
        return False

    if matches_any(resolved, settings.denylist):
        return False

    return True


def filter_findings(findings: List[Finding], subject_url: str, settings: Settings) -> List[Finding]:
    return [f for f in findings if is_visible(f, subject_url, settings)]
