#!/usr/bin/env python3
"""
Repository Client - XRPC record operations against a PDS
create / get / put / delete / list for one authenticated account

Errors come back as the hc taxonomy: RecordNotFound becomes
RecordNotFoundError, InvalidSwap becomes ConcurrencyConflictError, anything
else (network, 5xx, auth) is a RepositoryError.
"""

import threading
import time
from dataclasses import dataclass
from typing import Dict, Any, Optional, Tuple, List, Callable

import requests

from hypercerts import __version__
from hypercerts.atproto.uri import build_record_uri
from hypercerts.core.config import HypercertsConfig
from hypercerts.core.error_handler import (
    RepositoryError,
    RecordNotFoundError,
    ConcurrencyConflictError,
    AuthError,
)
from hypercerts.core.hc_logger import repo_logger

USER_AGENT = f"hc/{__version__}"


@dataclass
class RecordEntry:
    """A single record from a listing"""
    uri: str
    cid: str
    value: Dict[str, Any]


def _raise_for_xrpc(response: requests.Response, nsid: str, subject: str = ""):
    """Map an XRPC error response onto the hc exception types"""
    try:
        body = response.json()
    except ValueError:
        body = {}
    error_name = body.get("error", "") if isinstance(body, dict) else ""
    message = body.get("message", "") if isinstance(body, dict) else ""
    detail = message or error_name or response.text[:200]

    if error_name == "RecordNotFound" or (response.status_code == 404 and subject):
        raise RecordNotFoundError(subject, f"record not found: {subject}")
    if error_name == "InvalidSwap":
        raise ConcurrencyConflictError(
            f"{nsid} rejected: record changed since it was read ({detail})",
            status_code=response.status_code, error_name=error_name
        )
    if response.status_code == 401 or error_name in ("AuthRequired", "InvalidToken", "ExpiredToken"):
        raise AuthError(f"{nsid} unauthorized: {detail}", status_code=response.status_code, error_name=error_name)
    raise RepositoryError(
        f"{nsid} returned {response.status_code}: {detail}",
        status_code=response.status_code, error_name=error_name
    )


def create_session(host: str, identifier: str, password: str,
                   timeout: Optional[float] = None,
                   http: Optional[requests.Session] = None) -> Dict[str, Any]:
    """com.atproto.server.createSession, returns the raw session payload"""
    http = http or requests.Session()
    url = f"{host.rstrip('/')}/xrpc/com.atproto.server.createSession"
    try:
        response = http.post(
            url,
            json={"identifier": identifier, "password": password},
            headers={"User-Agent": USER_AGENT},
            timeout=timeout or HypercertsConfig.HTTP_TIMEOUT_SECONDS
        )
    except requests.exceptions.RequestException as e:
        raise AuthError(f"login request failed: {e}")
    if response.status_code != 200:
        try:
            _raise_for_xrpc(response, "com.atproto.server.createSession")
        except RepositoryError as e:
            raise AuthError(str(e), status_code=e.status_code, error_name=e.error_name)
    return response.json()


class RepositoryClient:
    """Authenticated XRPC client bound to one account repository"""

    def __init__(self, host: str, did: str, access_jwt: str = "", refresh_jwt: str = "",
                 handle: str = "", timeout: Optional[float] = None,
                 on_refresh: Optional[Callable[["RepositoryClient"], None]] = None,
                 http: Optional[requests.Session] = None):
        self.host = host.rstrip('/')
        self.did = did
        self.handle = handle
        self.access_jwt = access_jwt
        self.refresh_jwt = refresh_jwt
        self.timeout = timeout or HypercertsConfig.HTTP_TIMEOUT_SECONDS
        self.on_refresh = on_refresh
        self.http = http or requests.Session()
        self.http.headers.update({"User-Agent": USER_AGENT})
        # discovery threads share one client; refresh tokens are single use
        self._refresh_lock = threading.Lock()

    # ===== Transport =====

    def _headers(self, token: Optional[str] = None) -> Dict[str, str]:
        token = token if token is not None else self.access_jwt
        return {"Authorization": f"Bearer {token}"} if token else {}

    def _xrpc(self, method: str, nsid: str, params: Dict[str, Any] = None,
              body: Dict[str, Any] = None, subject: str = "", retry_auth: bool = True) -> Dict[str, Any]:
        """Run one XRPC call, refreshing an expired access token once"""
        url = f"{self.host}/xrpc/{nsid}"
        sent_token = self.access_jwt
        start_time = time.time()
        try:
            if method == 'GET':
                response = self.http.get(url, params=params, headers=self._headers(sent_token), timeout=self.timeout)
            else:
                response = self.http.post(url, json=body, headers=self._headers(sent_token), timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            repo_logger.log_warning("XRPC_TRANSPORT", f"{nsid} failed", {"error": str(e)})
            raise RepositoryError(f"{nsid} request failed: {e}")

        repo_logger.log_debug("XRPC_CALL", nsid, {
            "status_code": response.status_code,
            "duration": f"{time.time() - start_time:.3f}s"
        })

        if response.status_code == 200:
            if not response.content:
                return {}
            try:
                return response.json()
            except ValueError:
                raise RepositoryError(f"{nsid} returned invalid JSON")

        if retry_auth and self.refresh_jwt and self._is_expired(response):
            self.refresh_session(stale_token=sent_token)
            return self._xrpc(method, nsid, params=params, body=body, subject=subject, retry_auth=False)

        _raise_for_xrpc(response, nsid, subject)

    @staticmethod
    def _is_expired(response: requests.Response) -> bool:
        if response.status_code not in (400, 401):
            return False
        try:
            data = response.json()
        except ValueError:
            return False
        return isinstance(data, dict) and data.get("error") == "ExpiredToken"

    def refresh_session(self, stale_token: Optional[str] = None):
        """
        Trade the refresh token for a new token pair.

        stale_token is the access token a rejected request was sent with. If
        another thread has already replaced it, the new pair is reused and no
        second refresh is attempted.
        """
        with self._refresh_lock:
            if stale_token is not None and self.access_jwt != stale_token:
                repo_logger.log_debug("SESSION_ALREADY_REFRESHED", "Reusing token refreshed by another request")
                return

            url = f"{self.host}/xrpc/com.atproto.server.refreshSession"
            try:
                response = self.http.post(url, headers=self._headers(self.refresh_jwt), timeout=self.timeout)
            except requests.exceptions.RequestException as e:
                raise AuthError(f"session refresh failed: {e}")
            if response.status_code != 200:
                raise AuthError(f"session refresh failed: HTTP {response.status_code}",
                                status_code=response.status_code)

            data = response.json()
            self.access_jwt = data.get("accessJwt", "")
            self.refresh_jwt = data.get("refreshJwt", self.refresh_jwt)
            self.handle = data.get("handle", self.handle)
            repo_logger.log_info("SESSION_REFRESHED", "Access token refreshed", {"did": self.did})

            if self.on_refresh:
                self.on_refresh(self)

    # ===== Records =====

    def create_record(self, collection: str, record: Dict[str, Any], rkey: str = None) -> Tuple[str, str]:
        """Create a record, returns (uri, cid). Lexicon validation is off for unpublished schemas."""
        body = {"repo": self.did, "collection": collection, "record": record, "validate": False}
        if rkey:
            body["rkey"] = rkey
        data = self._xrpc('POST', "com.atproto.repo.createRecord", body=body)
        return data.get("uri", ""), data.get("cid", "")

    def get_record(self, did: str, collection: str, rkey: str) -> Tuple[Dict[str, Any], str]:
        """Fetch a record, returns (value, cid)"""
        subject = build_record_uri(did, collection, rkey)
        data = self._xrpc('GET', "com.atproto.repo.getRecord",
                          params={"repo": did, "collection": collection, "rkey": rkey},
                          subject=subject)
        value = data.get("value")
        if not isinstance(value, dict):
            raise RepositoryError(f"empty record value for {subject}")
        return value, data.get("cid", "")

    def put_record(self, did: str, collection: str, rkey: str, record: Dict[str, Any],
                   swap_record: Optional[str] = None) -> str:
        """Replace a record; swap_record is the CID last read (optimistic concurrency)"""
        body = {"repo": did, "collection": collection, "rkey": rkey, "record": record, "validate": False}
        if swap_record:
            body["swapRecord"] = swap_record
        data = self._xrpc('POST', "com.atproto.repo.putRecord", body=body,
                          subject=build_record_uri(did, collection, rkey))
        return data.get("uri", "")

    def delete_record(self, did: str, collection: str, rkey: str):
        self._xrpc('POST', "com.atproto.repo.deleteRecord",
                   body={"repo": did, "collection": collection, "rkey": rkey},
                   subject=build_record_uri(did, collection, rkey))
        repo_logger.log_info("RECORD_DELETED", build_record_uri(did, collection, rkey))

    def list_records(self, did: str, collection: str, cursor: Optional[str] = None,
                     limit: Optional[int] = None) -> Tuple[List[Dict[str, Any]], Optional[str]]:
        """One page of com.atproto.repo.listRecords, returns (records, next_cursor)"""
        params = {"repo": did, "collection": collection, "limit": limit or HypercertsConfig.LIST_PAGE_LIMIT}
        if cursor:
            params["cursor"] = cursor
        data = self._xrpc('GET', "com.atproto.repo.listRecords", params=params)
        return data.get("records", []) or [], data.get("cursor") or None

    def list_all_records(self, did: str, collection: str) -> List[RecordEntry]:
        """Every record in a collection, following cursors. Records without a value are skipped."""
        entries = []
        cursor = None
        while True:
            records, cursor = self.list_records(did, collection, cursor=cursor)
            for rec in records:
                value = rec.get("value")
                if not isinstance(value, dict):
                    continue
                entries.append(RecordEntry(uri=rec.get("uri", ""), cid=rec.get("cid", ""), value=value))
            if not cursor:
                break
        return entries

    # ===== Repo & session info =====

    def describe_repo(self, did: str) -> Dict[str, Any]:
        return self._xrpc('GET', "com.atproto.repo.describeRepo", params={"repo": did})

    def get_session(self) -> Dict[str, Any]:
        return self._xrpc('GET', "com.atproto.server.getSession")
