#!/usr/bin/env python3
"""
Record Writer - flag-driven create and edit

Creates stamp $type and createdAt, and link to other records by strong
reference: the target's URI plus the CID read just before writing.

Edits are read-modify-write. The record is fetched, changed fields are
applied, and the write carries swapRecord=<cid read>, so a record changed
by someone else in between fails with ConcurrencyConflictError instead of
being overwritten.
"""

from datetime import datetime, timezone
from typing import Dict, Any, List, Optional, Sequence, Tuple

from hypercerts.atproto import collections as nsid
from hypercerts.atproto.uri import parse_record_uri, is_did
from hypercerts.core.error_handler import RecordNotFoundError, InvalidFieldError
from hypercerts.core.hc_logger import repo_logger
from hypercerts.core.records import build_strong_ref, normalize_date

URI_CONTENT_TYPE = "org.hypercerts.defs#uri"
WORK_SCOPE_STRING = nsid.COLLECTION_ACTIVITY + "#workScopeString"

SCORE_MIN_DEFAULT = 0
SCORE_MAX_DEFAULT = 10


def now_timestamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def split_list(value: Optional[str]) -> List[str]:
    """Comma-separated flag value to a list, blanks dropped"""
    return [part.strip() for part in (value or "").split(",") if part.strip()]


def _date(value: Optional[str]) -> Optional[str]:
    return normalize_date(value) if value else None


def _int(name: str, value: Optional[str], default: int) -> int:
    if value in (None, ""):
        return default
    try:
        return int(value)
    except ValueError:
        raise InvalidFieldError(f"invalid score {name}: must be an integer")


def parse_score(value: Optional[str], minimum: Optional[str] = None,
                maximum: Optional[str] = None) -> Optional[Dict[str, int]]:
    """Score object from flag strings; None when no score flag was given"""
    if not value and not minimum and not maximum:
        return None
    low = _int("min", minimum, SCORE_MIN_DEFAULT)
    high = _int("max", maximum, SCORE_MAX_DEFAULT)
    if not value:
        raise InvalidFieldError("score value is required when min/max are set")
    score = _int("value", value, 0)
    if score < low or score > high:
        raise InvalidFieldError(f"score value must be between {low} and {high}")
    return {"min": low, "max": high, "value": score}


# ===== Field builders (None means "not given") =====

def activity_fields(title=None, description=None, start_date=None, end_date=None,
                    work_scope=None) -> Dict[str, Any]:
    return {
        "title": title or None,
        "shortDescription": description or None,
        "startDate": _date(start_date),
        "endDate": _date(end_date),
        "workScope": {"$type": WORK_SCOPE_STRING, "scope": work_scope} if work_scope else None,
    }


def measurement_fields(metric=None, unit=None, value=None, start_date=None, end_date=None,
                       method_type=None) -> Dict[str, Any]:
    return {
        "metric": metric or None,
        "unit": unit or None,
        "value": value or None,
        "startDate": _date(start_date),
        "endDate": _date(end_date),
        "methodType": method_type or None,
    }


def attachment_fields(title=None, content_type=None, content_uris: Sequence[str] = ()) -> Dict[str, Any]:
    return {
        "title": title or None,
        "contentType": content_type or None,
        "content": [{"$type": URI_CONTENT_TYPE, "uri": u} for u in content_uris] or None,
    }


def evaluation_fields(summary=None, evaluators: Sequence[str] = (),
                      score: Optional[Dict[str, int]] = None) -> Dict[str, Any]:
    return {
        "summary": summary or None,
        "evaluators": list(evaluators) or None,
        "score": score,
    }


class RecordWriter:
    """Creates and edits records in the authenticated account's repository"""

    def __init__(self, client):
        self.client = client

    def _owner(self, ref) -> str:
        return ref.owner if is_did(ref.owner) else self.client.did

    def strong_ref(self, uri: str, label: str = "activity") -> Dict[str, str]:
        """{uri, cid} for an existing record; raises RecordNotFoundError if it is gone"""
        ref = parse_record_uri(uri)
        try:
            _, cid = self.client.get_record(self._owner(ref), ref.collection, ref.rkey)
        except RecordNotFoundError as e:
            raise RecordNotFoundError(uri, f"{label} not found: {ref.rkey}") from e
        return build_strong_ref(uri, cid)

    def create(self, collection: str, fields: Dict[str, Any]) -> Tuple[str, str]:
        record = {"$type": collection, "createdAt": now_timestamp()}
        record.update({k: v for k, v in fields.items() if v is not None})
        uri, cid = self.client.create_record(collection, record)
        repo_logger.log_info("RECORD_CREATED", uri)
        return uri, cid

    def edit(self, uri: str, fields: Dict[str, Any]) -> Optional[str]:
        """
        Apply the given fields to the stored record.

        Returns the record URI, or None when nothing differs from what is
        stored (no write is made).
        """
        ref = parse_record_uri(uri)
        existing, cid = self.client.get_record(self._owner(ref), ref.collection, ref.rkey)

        changes = {k: v for k, v in fields.items() if v is not None and existing.get(k) != v}
        if not changes:
            return None

        existing.update(changes)
        result = self.client.put_record(self._owner(ref), ref.collection, ref.rkey, existing, swap_record=cid)
        repo_logger.log_info("RECORD_UPDATED", uri, {"fields": ", ".join(sorted(changes))})
        return result or uri
