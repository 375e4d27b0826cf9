#!/usr/bin/env python3
"""
Backlink Index - find records that hold a strong reference to a target

Two strategies with the same result shape (a list of Record URIs):

* LocalBacklinkIndex lists every record of a candidate collection in one
  repository and matches its reference field. Used for the caller's own
  repo, and for collection membership which no external index covers.
* RemoteBacklinkIndex asks the Constellation service, paginating until
  the cursor runs out. Used for read-only display across the network.

Reference fields are one of two shapes:

    SingleRef("subject")                  record.subject.uri == target
    ArrayRef("subjects")                  any(e.uri == target for e in record.subjects)
    ArrayRef("items", "itemIdentifier")   any(e.itemIdentifier.uri == target ...)

URIs are compared as exact strings.
"""

from collections import Counter
from dataclasses import dataclass
from typing import Dict, Any, List, Optional, Sequence, Union

from hypercerts.atproto.client import RecordEntry
from hypercerts.atproto.constellation import ConstellationClient, LinkingRecord
from hypercerts.core.error_handler import BacklinkIndexError, HypercertsError
from hypercerts.core.hc_logger import index_logger


# ===== Field paths =====

def _ref_uri(ref: Any) -> Optional[str]:
    if isinstance(ref, dict):
        uri = ref.get("uri")
        if isinstance(uri, str):
            return uri
    return None


@dataclass(frozen=True)
class SingleRef:
    """A single strong-reference field, e.g. measurement.subject"""
    field: str

    @property
    def index_path(self) -> str:
        return f".{self.field}.uri"

    def referenced_uris(self, value: Dict[str, Any]) -> List[str]:
        uri = _ref_uri(value.get(self.field))
        return [uri] if uri is not None else []

    def matches(self, value: Dict[str, Any], target_uri: str) -> bool:
        return _ref_uri(value.get(self.field)) == target_uri


@dataclass(frozen=True)
class ArrayRef:
    """An array of strong references, e.g. attachment.subjects[]

    ref_field names the key inside each element that holds the reference,
    for arrays of wrapper objects such as collection.items[].itemIdentifier.
    """
    field: str
    ref_field: Optional[str] = None

    @property
    def index_path(self) -> str:
        if self.ref_field:
            return f".{self.field}[].{self.ref_field}.uri"
        return f".{self.field}[].uri"

    def referenced_uris(self, value: Dict[str, Any]) -> List[str]:
        items = value.get(self.field)
        if not isinstance(items, list):
            return []
        uris = []
        for element in items:
            ref = element.get(self.ref_field) if (self.ref_field and isinstance(element, dict)) else element
            uri = _ref_uri(ref)
            if uri is not None:
                uris.append(uri)
        return uris

    def matches(self, value: Dict[str, Any], target_uri: str) -> bool:
        return target_uri in self.referenced_uris(value)


FieldPath = Union[SingleRef, ArrayRef]

SUBJECT = SingleRef("subject")
SUBJECTS = ArrayRef("subjects")
COLLECTION_ITEMS = ArrayRef("items", "itemIdentifier")


def matches_reference(field_path: FieldPath, value: Dict[str, Any], target_uri: str) -> bool:
    """True when value references target_uri through field_path"""
    if isinstance(field_path, (SingleRef, ArrayRef)):
        return field_path.matches(value, target_uri)
    raise TypeError(f"unsupported field path: {field_path!r}")


# ===== Scan result =====

@dataclass
class BacklinkScan:
    """Outcome of one backlink scan

    error is set when the listing itself failed; uris is then empty and
    must not be read as "nothing links here".
    """
    collection: str
    field_path: FieldPath
    uris: List[str]
    error: Optional[Exception] = None

    @property
    def failed(self) -> bool:
        return self.error is not None

    def __len__(self) -> int:
        return len(self.uris)


# ===== Local exhaustive index =====

class LocalBacklinkIndex:
    """Scans one repository's collections record by record"""

    def __init__(self, client):
        self.client = client

    def find_referencing_records(self, owner: str, collection: str, field_path: FieldPath,
                                 target_uri: str) -> List[RecordEntry]:
        """Matching records in listing order. Listing errors propagate."""
        entries = self.client.list_all_records(owner, collection)
        return [e for e in entries if matches_reference(field_path, e.value, target_uri)]

    def scan(self, owner: str, collection: str, field_path: FieldPath, target_uri: str) -> BacklinkScan:
        """Like find_referencing_uris, but keeps a listing failure visible"""
        try:
            records = self.find_referencing_records(owner, collection, field_path, target_uri)
        except HypercertsError as e:
            index_logger.log_warning("LOCAL_SCAN_FAILED", f"Could not list {collection}", {
                "owner": owner, "target": target_uri, "error": str(e)
            })
            return BacklinkScan(collection=collection, field_path=field_path, uris=[], error=e)

        uris = [e.uri for e in records]
        index_logger.log_debug("LOCAL_SCAN", f"{len(uris)} match(es) in {collection}", {
            "path": field_path.index_path, "target": target_uri
        })
        return BacklinkScan(collection=collection, field_path=field_path, uris=uris)

    def find_referencing_uris(self, owner: str, collection: str, field_path: FieldPath,
                              target_uri: str) -> List[str]:
        """URIs of records in owner/collection that reference target_uri; [] on listing failure"""
        return self.scan(owner, collection, field_path, target_uri).uris

    def count_references(self, owner: str, collection: str, field_path: FieldPath) -> Dict[str, int]:
        """target URI -> number of referencing records, for list views. {} on failure."""
        try:
            entries = self.client.list_all_records(owner, collection)
        except HypercertsError as e:
            index_logger.log_warning("LOCAL_COUNT_FAILED", f"Could not list {collection}", {"error": str(e)})
            return {}
        counts = Counter()
        for entry in entries:
            # one count per referencing record, even if it repeats the target
            for uri in set(field_path.referenced_uris(entry.value)):
                counts[uri] += 1
        return dict(counts)


# ===== Remote index =====

class RemoteBacklinkIndex:
    """Backlink lookups through the Constellation service"""

    def __init__(self, constellation: Optional[ConstellationClient] = None):
        self.constellation = constellation or ConstellationClient()

    def find_linking_records(self, target_uri: str, collection: str, field_path: FieldPath,
                             owner: Optional[str] = None) -> List[LinkingRecord]:
        """All linking records across pages. Raises BacklinkIndexError."""
        records = self.constellation.get_all_backlink_records(target_uri, collection, field_path.index_path)
        if owner:
            records = [r for r in records if r.did == owner]
        return records

    def find_linking_records_any(self, target_uri: str, collection: str,
                                 field_paths: Sequence[FieldPath],
                                 owner: Optional[str] = None) -> List[LinkingRecord]:
        """
        Try each field path in turn and return the first non-empty result.
        An error or an empty answer moves on to the next path; if every
        path errored the last error is raised.
        """
        last_error = None
        any_succeeded = False
        for field_path in field_paths:
            try:
                records = self.find_linking_records(target_uri, collection, field_path, owner=owner)
            except BacklinkIndexError as e:
                index_logger.log_debug("REMOTE_PATH_FAILED", field_path.index_path, {"error": str(e)})
                last_error = e
                continue
            any_succeeded = True
            if records:
                return records
        if not any_succeeded and last_error is not None:
            raise last_error
        return []

    def find_referencing_uris(self, owner: Optional[str], collection: str, field_path: FieldPath,
                              target_uri: str) -> List[str]:
        """Same contract as the local index; owner=None means any repository"""
        try:
            records = self.find_linking_records(target_uri, collection, field_path, owner=owner)
        except BacklinkIndexError as e:
            index_logger.log_warning("REMOTE_QUERY_FAILED", f"Backlink query failed for {collection}", {
                "target": target_uri, "error": str(e)
            })
            return []
        return [r.uri for r in records]

    def summary(self, target_uri: str) -> Dict[str, int]:
        """collection -> count of linking records, without resolving them"""
        return self.constellation.get_all_backlinks(target_uri).counts_by_collection()


def find_referencing_uris(client, owner: str, collection: str, field_path: FieldPath,
                          target_uri: str) -> List[str]:
    """Local exhaustive lookup against one repository (fail-soft)"""
    return LocalBacklinkIndex(client).find_referencing_uris(owner, collection, field_path, target_uri)
