"""
Constellation link-index client
Answers "which records link to this target" across the whole network
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional

import requests

from hypercerts.atproto.client import USER_AGENT
from hypercerts.core.config import HypercertsConfig
from hypercerts.core.error_handler import BacklinkIndexError
from hypercerts.core.hc_logger import index_logger


@dataclass
class BacklinkCounts:
    """Record and distinct-DID counts for one collection + path"""
    records: int = 0
    distinct_dids: int = 0


@dataclass
class BacklinksSummary:
    """Response of /links/all: collection -> path -> counts"""
    links: Dict[str, Dict[str, BacklinkCounts]] = field(default_factory=dict)

    def counts_by_collection(self) -> Dict[str, int]:
        """Total linking records per collection, summed over paths"""
        counts = {}
        for collection, paths in self.links.items():
            total = sum(c.records for c in paths.values())
            if total:
                counts[collection] = total
        return counts


@dataclass
class LinkingRecord:
    """A single record that links to the target"""
    did: str
    collection: str
    rkey: str

    @property
    def uri(self) -> str:
        return f"at://{self.did}/{self.collection}/{self.rkey}"


@dataclass
class BacklinksPage:
    """One page of /links"""
    total: int
    cursor: Optional[str]
    linking_records: List[LinkingRecord]


class ConstellationClient:
    """HTTP client for the Constellation backlink index"""

    def __init__(self, base_url: Optional[str] = None, timeout: Optional[float] = None,
                 http: Optional[requests.Session] = None):
        self.base_url = (base_url or HypercertsConfig.CONSTELLATION_URL).rstrip('/')
        self.timeout = timeout or HypercertsConfig.HTTP_TIMEOUT_SECONDS
        self.http = http or requests.Session()
        self.http.headers.update({"User-Agent": USER_AGENT})

    def _get(self, path: str, params: Dict[str, str]) -> Dict:
        try:
            response = self.http.get(f"{self.base_url}{path}", params=params, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise BacklinkIndexError(f"constellation request failed: {e}")

        if response.status_code != 200:
            raise BacklinkIndexError(f"constellation returned {response.status_code}")
        try:
            return response.json()
        except ValueError as e:
            raise BacklinkIndexError(f"failed to decode backlinks: {e}")

    def get_all_backlinks(self, target: str) -> BacklinksSummary:
        """Summary of all records linking to the target (DID or Record URI)"""
        data = self._get("/links/all", {"target": target})
        links = {}
        for collection, paths in (data.get("links") or {}).items():
            links[collection] = {
                path: BacklinkCounts(records=int(c.get("records", 0)),
                                     distinct_dids=int(c.get("distinct_dids", 0)))
                for path, c in (paths or {}).items()
            }
        return BacklinksSummary(links=links)

    def get_backlinks(self, target: str, collection: str, path: str,
                      cursor: Optional[str] = None, limit: int = 0) -> BacklinksPage:
        """One page of records linking to target through collection + path"""
        params = {"target": target, "collection": collection, "path": path}
        if cursor:
            params["cursor"] = cursor
        if limit > 0:
            params["limit"] = str(limit)

        data = self._get("/links", params)
        records = [
            LinkingRecord(did=r.get("did", ""), collection=r.get("collection", ""), rkey=r.get("rkey", ""))
            for r in data.get("linking_records") or []
        ]
        return BacklinksPage(total=int(data.get("total", 0) or 0),
                             cursor=data.get("cursor") or None,
                             linking_records=records)

    def get_all_backlink_records(self, target: str, collection: str, path: str) -> List[LinkingRecord]:
        """Every linking record for target + collection + path, following cursors"""
        all_records = []
        cursor = None
        while True:
            page = self.get_backlinks(target, collection, path, cursor=cursor,
                                      limit=HypercertsConfig.BACKLINK_PAGE_LIMIT)
            all_records.extend(page.linking_records)
            if not page.cursor:
                break
            cursor = page.cursor
        index_logger.log_debug("BACKLINKS_FETCHED", target, {
            "collection": collection, "path": path, "count": len(all_records)
        })
        return all_records
