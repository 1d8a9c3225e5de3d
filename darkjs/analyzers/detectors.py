"""
Detector catalog.
A versioned table of named regex detectors run in a fixed group order:
structural (routes, URLs), endpoint refinement, GraphQL, secret formats, PII, environment leaks.
Matches are reported as-is; no checksum or liveness validation is attempted.
"""

import re
from dataclasses import dataclass
from typing import List, Tuple, Optional

from darkjs.core.logger import logger
from darkjs.models import FindingCategory


CATALOG_VERSION = "2024.1"

GROUP_ORDER = ("structural", "graphql", "secret", "pii", "env")

ENDPOINT_SHAPE = re.compile(r'/api/|/v\d+/|graphql', re.IGNORECASE)

# Short TLDs that collide with JS member names (console.info, this.app) are left out.
HOSTNAME_TLDS = "com|net|org|io|dev|ai|cloud|gov|edu|internal|local|corp|lan|intranet"


@dataclass(frozen=True)
class Detector:
    name: str
    pattern: str
    category: FindingCategory
    group: str
    flags: int = 0

    def compile(self) -> "re.Pattern":
        return re.compile(self.pattern, self.flags)

    def find(self, text: str) -> List[str]:
        return [m for m in (match.group(0).strip() for match in self.compile().finditer(text)) if m]


C = FindingCategory

DETECTORS: List[Detector] = [
    Detector("route", r'(?<![\w:/.])/[a-zA-Z0-9_\-/]{3,}', C.ROUTE, "structural"),
    Detector("url", r'https?://[^\s"\'<>\\]+', C.URL, "structural"),

    Detector("graphql_operation",
             r'\b(?:query|mutation|subscription)\s+[A-Za-z_]\w*\s*(?:\([^)]*\))?\s*\{',
             C.GRAPHQL, "graphql"),

    Detector("keyword_assignment",
             r'\b(?:api[_-]?key|apikey|secret|token|auth[_-]?token|access[_-]?token)\b\s*[:=]\s*["\']?[A-Za-z0-9_\-.]{8,}["\']?',
             C.SECRET, "secret", re.IGNORECASE),
    Detector("aws_access_key_id", r'\b(?:AKIA|ASIA)[0-9A-Z]{16}\b', C.SECRET, "secret"),
    Detector("aws_secret_access_key",
             r'aws_secret_access_key["\']?\s*[:=]\s*["\']?[A-Za-z0-9/+=]{40}["\']?',
             C.SECRET, "secret", re.IGNORECASE),
    Detector("firebase_config", r'firebaseConfig\s*=\s*\{[^}]+\}', C.SECRET, "secret"),
    Detector("google_api_key", r'AIza[0-9A-Za-z\-_]{35}', C.SECRET, "secret"),
    Detector("google_oauth_token", r'ya29\.[0-9A-Za-z_\-]{50,}', C.SECRET, "secret"),
    Detector("stripe_secret_live", r'sk_live_[0-9a-zA-Z]{24,}', C.SECRET, "secret"),
    Detector("stripe_restricted_live", r'rk_live_[0-9a-zA-Z]{24,}', C.SECRET, "secret"),
    Detector("stripe_publishable_live", r'pk_live_[0-9a-zA-Z]{24,}', C.SECRET, "secret"),
    Detector("mailgun_key", r'key-[0-9a-zA-Z]{32}', C.SECRET, "secret"),
    Detector("sendgrid_key", r'SG\.[A-Za-z0-9_\-]{22,}\.[A-Za-z0-9_\-]{22,}', C.SECRET, "secret"),
    Detector("twilio_account_sid", r'AC[a-zA-Z0-9]{32}', C.SECRET, "secret"),
    Detector("twilio_api_key", r'SK[a-zA-Z0-9]{32}', C.SECRET, "secret"),
    Detector("github_token", r'gh[pousr]_[A-Za-z0-9]{36}', C.SECRET, "secret"),
    Detector("slack_token", r'xox[baprs]-[0-9A-Za-z\-]{10,}', C.SECRET, "secret"),
    Detector("slack_webhook",
             r'https://hooks\.slack\.com/services/T[a-zA-Z0-9_]+/B[a-zA-Z0-9_]+/[a-zA-Z0-9]+',
             C.SECRET, "secret"),
    Detector("jwt", r'eyJ[A-Za-z0-9_\-]{10,}\.eyJ[A-Za-z0-9_\-]{10,}\.[A-Za-z0-9_\-]{10,}', C.SECRET, "secret"),
    Detector("private_key_block",
             r'-----BEGIN ((?:[A-Z]+ )*)PRIVATE KEY-----[\s\S]+?-----END \1PRIVATE KEY-----',
             C.SECRET, "secret"),
    Detector("url_credentials", r'[a-zA-Z][a-zA-Z0-9+.\-]*://[^\s:@/"\']+:[^\s:@/"\']+@[^\s"\'/]+', C.SECRET, "secret"),
    Detector("mongodb_uri", r'mongodb(?:\+srv)?://[^\s"\'<>]+', C.SECRET, "secret"),
    Detector("postgres_uri", r'postgres(?:ql)?://[^\s"\'<>]+', C.SECRET, "secret"),
    Detector("mysql_uri", r'mysql://[^\s"\'<>]+', C.SECRET, "secret"),
    Detector("redis_uri", r'rediss?://[^\s"\'<>]+', C.SECRET, "secret"),
    Detector("azure_connection_string",
             r'DefaultEndpointsProtocol=https?;AccountName=[^;\s"\']+;AccountKey=[^;\s"\']+',
             C.SECRET, "secret"),
    Detector("heroku_key", r'heroku[a-z0-9]{32}', C.SECRET, "secret"),
    Detector("base64_blob", r'\b(?:[A-Za-z0-9+/]{40,}={0,2})\b', C.SECRET, "secret"),

    Detector("email", r'\b[A-Za-z0-9._%+\-]+@[A-Za-z0-9.\-]+\.[A-Za-z]{2,}\b', C.EMAIL, "pii"),
    Detector("uuid",
             r'\b[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}\b',
             C.UUID, "pii"),
    Detector("phone",
             r'(?:\+\d{1,3}[\s.\-]?\(?\d{2,4}\)?|\(\d{3}\))[\s.\-]?\d{3}[\s.\-]?\d{4}\b',
             C.PHONE, "pii"),
    Detector("hostname",
             r'\b(?:[a-z0-9](?:[a-z0-9\-]{0,61}[a-z0-9])?\.)+(?:' + HOSTNAME_TLDS + r')\b(?![\w\-])',
             C.HOSTNAME, "pii", re.IGNORECASE),

    Detector("process_env", r'\bprocess\.env\.[A-Za-z_][A-Za-z0-9_]*', C.ENV_LEAK, "env"),
    Detector("import_meta_env", r'\bimport\.meta\.env\.[A-Za-z_][A-Za-z0-9_]*', C.ENV_LEAK, "env"),
    Detector("public_env_assignment",
             r'\b(?:NEXT_PUBLIC|REACT_APP|VUE_APP|VITE|GATSBY)_[A-Z0-9_]+["\']?\s*[:=]\s*["\']?[^\s"\',;}]+["\']?',
             C.ENV_LEAK, "env"),
    Detector("dotenv_line", r'^[ \t]*[A-Z][A-Z0-9_]{2,}=[^\s]+', C.ENV_LEAK, "env", re.MULTILINE),
    Detector("non_production_env",
             r'NODE_ENV["\']?\s*[:=]\s*["\'](?:development|dev|test|staging)["\']',
             C.ENV_LEAK, "env", re.IGNORECASE),
]

del C


class DetectorCatalog:

    def __init__(self, detectors: Optional[List[Detector]] = None):
        self.version = CATALOG_VERSION
        self.detectors = list(detectors if detectors is not None else DETECTORS)
        self._compiled = self._compile_patterns()

    def _compile_patterns(self) -> List[Tuple[Detector, "re.Pattern"]]:
        compiled = []
        for detector in self.detectors:
            try:
                compiled.append((detector, detector.compile()))
            except re.error as e:
                logger.warning(f"Detector {detector.name} disabled, invalid pattern: {e}")
        return compiled

    def _run_group(self, group: str, text: str) -> List[Tuple[FindingCategory, str]]:
        matches = []
        for detector, regex in self._compiled:
            if detector.group != group:
                continue
            for match in regex.finditer(text):
                value = match.group(0).strip()
                if value:
                    matches.append((detector.category, value))
        return matches

    def classify(self, text: str) -> List[Tuple[FindingCategory, str]]:
        if not text:
            return []

        structural = self._run_group("structural", text)
        results = list(structural)
        results.extend(
            (FindingCategory.API_ENDPOINT, value)
            for _, value in structural
            if is_endpoint_shaped(value)
        )

        for group in GROUP_ORDER[1:]:
            results.extend(self._run_group(group, text))

        return results

    def secret_matches(self, text: str) -> List[str]:
        if not text:
            return []
        return [value for _, value in self._run_group("secret", text)]

    def get(self, name: str) -> Optional[Detector]:
        for detector in self.detectors:
            if detector.name == name:
                return detector
        return None


def is_endpoint_shaped(value: str) -> bool:
    return ENDPOINT_SHAPE.search(value) is not None


def endpoint_category(url: str) -> FindingCategory:
    return FindingCategory.API_ENDPOINT if is_endpoint_shaped(url) else FindingCategory.URL
