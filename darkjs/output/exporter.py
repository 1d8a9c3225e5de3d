"""
Read-side views and exports over stored subject records.
Flattening, category/group filters, substring search, (type, value) dedup, stats, CSV and JSON.
"""

import csv
import io
import json
import os
from datetime import datetime, timezone
from typing import Dict, List, Optional

from darkjs.core.logger import logger
from darkjs.models import Finding, FindingCategory, SubjectRecord, ENDPOINT_CATEGORIES


CATEGORY_GROUPS = {
    "endpoints": {c.value for c in ENDPOINT_CATEGORIES},
    "payloads": {FindingCategory.SECRET.value},
}

FINDING_CSV_HEADER = ["Type", "Value", "Source"]
ROW_CSV_HEADER = ["Type", "Value", "Source", "Subject", "PageTitle", "PageUrl", "ScannedAt"]


def format_scanned_at(millis: int) -> str:
    if not millis:
        return ""
    return datetime.fromtimestamp(millis / 1000, tz=timezone.utc).isoformat()


def flatten_records(records: List[SubjectRecord]) -> List[Dict]:
    rows = []
    for record in records:
        for finding in record.findings:
            rows.append({
                "type": finding.category.value,
                "value": finding.value,
                "source": finding.source,
                "subjectId": record.subject_id,
                "pageTitle": record.page_title,
                "pageUrl": record.page_url,
                "scannedAt": format_scanned_at(record.last_scanned_at),
            })
    return rows


def filter_by_type(rows: List[Dict], type_filter: Optional[str]) -> List[Dict]:
    if not type_filter or type_filter == "all":
        return rows
    allowed = CATEGORY_GROUPS.get(type_filter, {type_filter})
    return [row for row in rows if row["type"] in allowed]


def search_rows(rows: List[Dict], term: Optional[str]) -> List[Dict]:
    term = (term or "").strip().lower()
    if not term:
        return rows
    matched = []
    for row in rows:
        haystack = " ".join([row["value"], row["source"], row.get("pageTitle", ""), row.get("pageUrl", "")])
        if term in haystack.lower():
            matched.append(row)
    return matched


def dedupe_rows(rows: List[Dict]) -> List[Dict]:
    seen = set()
    unique = []
    for row in rows:
        key = (row["type"], row["value"])
        if key in seen:
            continue
        seen.add(key)
        unique.append(row)
    return unique


def dedupe_findings(findings: List[Finding]) -> List[Finding]:
    seen = set()
    unique = []
    for finding in findings:
        if finding.key in seen:
            continue
        seen.add(finding.key)
        unique.append(finding)
    return unique


def compute_stats(rows: List[Dict]) -> Dict[str, int]:
    endpoints = {row["value"] for row in rows if row["type"] in CATEGORY_GROUPS["endpoints"]}
    payloads = {row["value"] for row in rows if row["type"] in CATEGORY_GROUPS["payloads"]}
    unique = {(row["type"], row["value"]) for row in rows}
    return {
        "total": len(rows),
        "endpoints": len(endpoints),
        "payloads": len(payloads),
        "dupes": len(rows) - len(unique),
    }


def select_rows(records: List[SubjectRecord], type_filter: Optional[str] = None,
                term: Optional[str] = None, dedupe: bool = True) -> List[Dict]:
    rows = search_rows(filter_by_type(flatten_records(records), type_filter), term)
    return dedupe_rows(rows) if dedupe else rows


def findings_to_csv(findings: List[Finding]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(FINDING_CSV_HEADER)
    for finding in findings:
        writer.writerow(finding.to_tuple())
    return buffer.getvalue()


def rows_to_csv(rows: List[Dict]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(ROW_CSV_HEADER)
    for row in rows:
        writer.writerow([
            row["type"], row["value"], row["source"], row["subjectId"],
            row["pageTitle"], row["pageUrl"], row["scannedAt"],
        ])
    return buffer.getvalue()


def rows_to_json(rows: List[Dict]) -> str:
    return json.dumps(rows, indent=2)


class ReportExporter:

    def __init__(self, output_dir: str = "darkjs_output"):
        self.output_dir = output_dir

    def export(self, rows: List[Dict], fmt: str = "json", filepath: Optional[str] = None) -> str:
        if fmt not in ("json", "csv"):
            raise ValueError(f"Unsupported export format: {fmt}")

        if filepath is None:
            os.makedirs(self.output_dir, exist_ok=True)
            timestamp = datetime.now().strftime('%Y%m%d_%H%M%S')
            filepath = os.path.join(self.output_dir, f"findings_{timestamp}.{fmt}")

        content = rows_to_csv(rows) if fmt == "csv" else rows_to_json(rows)
        with open(filepath, 'w', encoding='utf-8', newline='') as f:
            f.write(content)

        logger.info(f"Exported {len(rows)} findings to {filepath}")
        return filepath
