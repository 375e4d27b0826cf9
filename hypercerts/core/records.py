"""
Record helpers and the record type registry
Safe field access, display formatting, strong refs
"""
import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Any, List, Optional, Callable

from hypercerts.atproto import collections as nsid
from hypercerts.core.backlinks import FieldPath, SUBJECT, SUBJECTS


def map_str(m: Dict[str, Any], key: str) -> str:
    """String value of m[key], or "" when missing or not a string"""
    value = m.get(key) if isinstance(m, dict) else None
    return value if isinstance(value, str) else ""


def map_map(m: Dict[str, Any], key: str) -> Optional[Dict[str, Any]]:
    value = m.get(key) if isinstance(m, dict) else None
    return value if isinstance(value, dict) else None


def map_list(m: Dict[str, Any], key: str) -> Optional[List[Any]]:
    value = m.get(key) if isinstance(m, dict) else None
    return value if isinstance(value, list) else None


def truncate(s: str, max_len: int) -> str:
    """Shorten s to max_len with a "..." suffix"""
    if len(s) <= max_len:
        return s
    if max_len <= 3:
        return s[:max_len]
    return s[:max_len - 3] + "..."


def format_date(s: str) -> str:
    """RFC3339 timestamp to YYYY-MM-DD; "-" when empty, input unchanged when unparseable"""
    if not s:
        return "-"
    try:
        return datetime.fromisoformat(s.replace("Z", "+00:00")).strftime("%Y-%m-%d")
    except ValueError:
        return s


def normalize_date(s: str) -> str:
    """YYYY-MM-DD becomes midnight UTC in RFC3339, anything else passes through"""
    if len(s) == 10 and s[4] == '-' and s[7] == '-':
        return s + "T00:00:00Z"
    return s


def build_strong_ref(uri: str, cid: str) -> Dict[str, str]:
    return {"uri": uri, "cid": cid}


def pretty_json(value: Any) -> str:
    return json.dumps(value, indent=2, ensure_ascii=False, default=str)


def _score(rec: Dict[str, Any]) -> str:
    score = map_map(rec, "score")
    if score and isinstance(score.get("value"), (int, float)) and isinstance(score.get("max"), (int, float)):
        return f"{int(score['value'])}/{int(score['max'])}"
    return "-"


def _count(key: str) -> Callable[[Dict[str, Any]], str]:
    return lambda rec: str(len(map_list(rec, key) or []))


def _nested(key: str, inner: str) -> Callable[[Dict[str, Any]], str]:
    return lambda rec: map_str(map_map(rec, key) or {}, inner)


@dataclass
class RecordType:
    """How one collection is addressed and shown by the CLI"""
    name: str
    collection: str
    label: str
    columns: List[tuple] = field(default_factory=list)   # (header, getter, width)
    activity_link: Optional[FieldPath] = None            # how it points at an activity, if it does


RECORD_TYPES: Dict[str, RecordType] = {
    "activity": RecordType(
        "activity", nsid.COLLECTION_ACTIVITY, "activity",
        columns=[
            ("TITLE", lambda r: map_str(r, "title"), 30),
            ("SCOPE", _nested("workScope", "scope"), 15),
        ],
    ),
    "measurement": RecordType(
        "measurement", nsid.COLLECTION_MEASUREMENT, "measurement",
        columns=[
            ("METRIC", lambda r: map_str(r, "metric"), 20),
            ("VALUE", lambda r: map_str(r, "value"), 10),
            ("UNIT", lambda r: map_str(r, "unit"), 10),
        ],
        activity_link=SUBJECT,
    ),
    "attachment": RecordType(
        "attachment", nsid.COLLECTION_ATTACHMENT, "attachment",
        columns=[
            ("TITLE", lambda r: map_str(r, "title"), 25),
            ("TYPE", lambda r: map_str(r, "contentType") or "-", 12),
            ("SUBJECTS", _count("subjects"), 8),
            ("CONTENT", _count("content"), 8),
        ],
        activity_link=SUBJECTS,
    ),
    "evaluation": RecordType(
        "evaluation", nsid.COLLECTION_EVALUATION, "evaluation",
        columns=[
            ("SUMMARY", lambda r: map_str(r, "summary"), 35),
            ("EVALUATORS", _count("evaluators"), 10),
            ("SCORE", _score, 10),
        ],
        activity_link=SUBJECT,
    ),
    "collection": RecordType(
        "collection", nsid.COLLECTION_COLLECTION, "collection",
        columns=[
            ("TITLE", lambda r: map_str(r, "title"), 40),
            ("TYPE", lambda r: map_str(r, "type") or "-", 15),
            ("ITEMS", _count("items"), 8),
        ],
    ),
    "rights": RecordType(
        "rights", nsid.COLLECTION_RIGHTS, "rights",
        columns=[
            ("NAME", lambda r: map_str(r, "rightsName"), 25),
            ("TYPE", lambda r: map_str(r, "rightsType"), 12),
            ("DESCRIPTION", lambda r: map_str(r, "rightsDescription"), 35),
        ],
    ),
    "location": RecordType(
        "location", nsid.COLLECTION_LOCATION, "location",
        columns=[
            ("NAME", lambda r: map_str(r, "name"), 25),
            ("COORDINATES", _nested("location", "string"), 25),
            ("DESCRIPTION", lambda r: map_str(r, "description"), 30),
        ],
    ),
    "contributor": RecordType(
        "contributor", nsid.COLLECTION_CONTRIBUTOR_INFO, "contributor",
        columns=[
            ("IDENTIFIER", lambda r: map_str(r, "identifier"), 30),
            ("NAME", lambda r: map_str(r, "displayName"), 25),
        ],
    ),
    "funding": RecordType(
        "funding", nsid.COLLECTION_FUNDING_RECEIPT, "funding receipt",
        columns=[
            ("AMOUNT", lambda r: map_str(r, "amount"), 12),
            ("CURRENCY", lambda r: map_str(r, "currency"), 8),
            ("TO", lambda r: map_str(r, "to"), 20),
            ("OCCURRED", lambda r: format_date(map_str(r, "occurredAt")), 10),
        ],
    ),
    "workscope": RecordType(
        "workscope", nsid.COLLECTION_WORK_SCOPE_TAG, "work scope tag",
        columns=[
            ("KEY", lambda r: map_str(r, "key"), 25),
            ("LABEL", lambda r: map_str(r, "label"), 30),
            ("KIND", lambda r: map_str(r, "kind"), 12),
        ],
    ),
}
