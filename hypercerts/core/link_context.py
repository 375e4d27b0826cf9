#!/usr/bin/env python3
"""
Link Context Assembler - read-only view of a record plus what links to it

Categories are independent and fetched in parallel:
- measurements, evaluations: remote index on .subject.uri
- attachments: remote index on .subjects[].uri, then .subject.uri
- collections: local scan of the owner's collection records

Failures degrade instead of aborting: a failed backlink query becomes a
warning on its category, a failed record fetch becomes a placeholder row.
Only the root fetch itself is fatal.
"""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Any, List, Optional, Iterable

from hypercerts.atproto import collections as nsid
from hypercerts.atproto.uri import parse_record_uri
from hypercerts.core.backlinks import (
    LocalBacklinkIndex, RemoteBacklinkIndex, SUBJECT, SUBJECTS, COLLECTION_ITEMS,
)
from hypercerts.core.config import HypercertsConfig
from hypercerts.core.error_handler import HypercertsError, BacklinkIndexError
from hypercerts.core.hc_logger import context_logger


class ContextCategory(Enum):
    MEASUREMENTS = "measurements"
    ATTACHMENTS = "attachments"
    EVALUATIONS = "evaluations"
    COLLECTIONS = "collections"


# Display order
CATEGORY_ORDER = (
    ContextCategory.MEASUREMENTS,
    ContextCategory.ATTACHMENTS,
    ContextCategory.EVALUATIONS,
    ContextCategory.COLLECTIONS,
)


@dataclass
class ContextOptions:
    """Which categories to expand, and whether rows carry full record bodies"""
    categories: frozenset = frozenset()
    include_bodies: bool = True

    def __post_init__(self):
        self.categories = frozenset(self.categories)

    @classmethod
    def all(cls, include_bodies: bool = True) -> "ContextOptions":
        return cls(categories=frozenset(CATEGORY_ORDER), include_bodies=include_bodies)


@dataclass
class ContextRow:
    uri: str
    did: str
    rkey: str
    record: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.error is not None


@dataclass
class CategoryView:
    category: ContextCategory
    rows: List[ContextRow] = field(default_factory=list)
    warning: Optional[str] = None


@dataclass
class CompositeView:
    uri: str
    record: Dict[str, Any]
    backlink_counts: Dict[str, int] = field(default_factory=dict)
    categories: List[CategoryView] = field(default_factory=list)

    def category(self, category: ContextCategory) -> Optional[CategoryView]:
        for view in self.categories:
            if view.category == category:
                return view
        return None

    def to_dict(self, record_key: str = "record") -> Dict[str, Any]:
        result = {"uri": self.uri, record_key: self.record}
        if self.backlink_counts:
            result["backlinks"] = dict(self.backlink_counts)
        for view in self.categories:
            items = []
            for row in view.rows:
                item = dict(row.record) if row.record is not None else {}
                item["_uri"] = row.uri
                item["_did"] = row.did
                if row.failed:
                    item["_error"] = row.error
                items.append(item)
            result[view.category.value] = items
            if view.warning:
                result.setdefault("warnings", []).append(view.warning)
        return result


class LinkContextAssembler:
    """Builds a CompositeView for one root record"""

    def __init__(self, client, remote_index: Optional[RemoteBacklinkIndex] = None,
                 local_index: Optional[LocalBacklinkIndex] = None,
                 max_workers: Optional[int] = None):
        self.client = client
        self.remote_index = remote_index or RemoteBacklinkIndex()
        self.local_index = local_index or LocalBacklinkIndex(client)
        self.max_workers = max_workers or HypercertsConfig.DISCOVERY_WORKERS

    def assemble_context(self, root_uri: str, options: Optional[ContextOptions] = None) -> CompositeView:
        options = options or ContextOptions()
        root = parse_record_uri(root_uri)
        record, _ = self.client.get_record(root.owner, root.collection, root.rkey)
        view = CompositeView(uri=root_uri, record=record)

        if not options.categories:
            view.backlink_counts = self._summary(root_uri)
            return view

        wanted = [c for c in CATEGORY_ORDER if c in options.categories]
        workers = max(1, min(self.max_workers, len(wanted)))
        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = [
                executor.submit(self._assemble_category, category, root.owner, root_uri, options.include_bodies)
                for category in wanted
            ]
            view.categories = [future.result() for future in futures]
        return view

    def _summary(self, root_uri: str) -> Dict[str, int]:
        try:
            return self.remote_index.summary(root_uri)
        except BacklinkIndexError as e:
            context_logger.log_warning("SUMMARY_FAILED", root_uri, {"error": str(e)})
            return {}

    def _assemble_category(self, category: ContextCategory, owner: str, root_uri: str,
                           include_bodies: bool) -> CategoryView:
        if category == ContextCategory.COLLECTIONS:
            return self._collections(owner, root_uri, include_bodies)

        try:
            if category == ContextCategory.ATTACHMENTS:
                linking = self.remote_index.find_linking_records_any(
                    root_uri, nsid.COLLECTION_ATTACHMENT, [SUBJECTS, SUBJECT])
            elif category == ContextCategory.MEASUREMENTS:
                linking = self.remote_index.find_linking_records(root_uri, nsid.COLLECTION_MEASUREMENT, SUBJECT)
            else:
                linking = self.remote_index.find_linking_records(root_uri, nsid.COLLECTION_EVALUATION, SUBJECT)
        except BacklinkIndexError as e:
            context_logger.log_warning("CATEGORY_QUERY_FAILED", category.value, {"target": root_uri})
            return CategoryView(category=category, warning=f"failed to fetch {category.value} backlinks: {e}")

        rows = [self._fetch_row(lr.did, lr.collection, lr.rkey, lr.uri, include_bodies) for lr in linking]
        return CategoryView(category=category, rows=rows)

    def _collections(self, owner: str, root_uri: str, include_bodies: bool) -> CategoryView:
        try:
            entries = self.local_index.find_referencing_records(
                owner, nsid.COLLECTION_COLLECTION, COLLECTION_ITEMS, root_uri)
        except HypercertsError as e:
            context_logger.log_warning("COLLECTION_SCAN_FAILED", root_uri, {"error": str(e)})
            return CategoryView(category=ContextCategory.COLLECTIONS,
                                warning=f"failed to fetch collections: {e}")

        rows = []
        for entry in entries:
            ref = _split(entry.uri)
            rows.append(ContextRow(uri=entry.uri, did=ref[0], rkey=ref[2],
                                   record=entry.value if include_bodies else None))
        return CategoryView(category=ContextCategory.COLLECTIONS, rows=rows)

    def _fetch_row(self, did: str, collection: str, rkey: str, uri: str, include_bodies: bool) -> ContextRow:
        row = ContextRow(uri=uri, did=did, rkey=rkey)
        if not include_bodies:
            return row
        try:
            row.record, _ = self.client.get_record(did, collection, rkey)
        except HypercertsError as e:
            context_logger.log_debug("ROW_FETCH_FAILED", uri, {"error": str(e)})
            row.error = str(e)
        return row


def _split(uri: str) -> tuple:
    """(owner, collection, rkey), tolerating URIs the strict parser rejects"""
    try:
        ref = parse_record_uri(uri)
        return ref.owner, ref.collection, ref.rkey
    except HypercertsError:
        parts = uri[len("at://"):].split("/") if uri.startswith("at://") else uri.split("/")
        parts += [""] * (3 - len(parts))
        return parts[0], parts[1], parts[2]


def requested_categories(measurements=False, attachments=False, evaluations=False,
                         collections=False, show_all=False) -> Iterable[ContextCategory]:
    """Map CLI flags onto categories"""
    if show_all:
        return CATEGORY_ORDER
    picked = []
    if measurements:
        picked.append(ContextCategory.MEASUREMENTS)
    if attachments:
        picked.append(ContextCategory.ATTACHMENTS)
    if evaluations:
        picked.append(ContextCategory.EVALUATIONS)
    if collections:
        picked.append(ContextCategory.COLLECTIONS)
    return picked
