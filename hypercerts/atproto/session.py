"""
Auth session persistence and login
The session file lives under the XDG state directory with mode 0600
"""
import json
import os
from dataclasses import dataclass, asdict, fields
from typing import Optional, Tuple, Dict, Any

import requests

from hypercerts.atproto.client import RepositoryClient, create_session, USER_AGENT
from hypercerts.atproto.uri import is_did
from hypercerts.core.config import HypercertsConfig
from hypercerts.core.error_handler import HypercertsError, AuthError, NoAuthSessionError
from hypercerts.core.hc_logger import session_logger


@dataclass
class AuthSession:
    did: str = ""
    pds: str = ""
    handle: str = ""
    password: str = ""
    access_token: str = ""
    refresh_token: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AuthSession":
        known = {f.name for f in fields(cls)}
        return cls(**{k: str(v) for k, v in data.items() if k in known and v is not None})


# ===== Session file =====

def persist_session(sess: AuthSession, path: Optional[str] = None):
    path = path or HypercertsConfig.SESSION_FILE
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w") as f:
        json.dump(asdict(sess), f, indent=2)


def load_session(path: Optional[str] = None) -> AuthSession:
    path = path or HypercertsConfig.SESSION_FILE
    if not os.path.exists(path):
        raise NoAuthSessionError()
    try:
        with open(path) as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        raise AuthError(f"could not read auth session {path}: {e}")
    if not isinstance(data, dict):
        raise AuthError(f"could not read auth session {path}: not an object")
    return AuthSession.from_dict(data)


def wipe_session(path: Optional[str] = None):
    """Delete the session file; a missing file is fine"""
    path = path or HypercertsConfig.SESSION_FILE
    if os.path.exists(path):
        os.remove(path)
        session_logger.log_info("SESSION_WIPED", path)


def _persist_refreshed(path: Optional[str]):
    def on_refresh(client: RepositoryClient):
        try:
            sess = load_session(path)
        except HypercertsError:
            sess = AuthSession()
        sess.did = client.did
        sess.pds = client.host
        sess.access_token = client.access_jwt
        sess.refresh_token = client.refresh_jwt
        try:
            persist_session(sess, path)
        except OSError as e:
            session_logger.log_warning("SESSION_SAVE_FAILED", "failed to save refreshed auth session", {"error": str(e)})
    return on_refresh


# ===== Identity =====

def _get(url: str) -> requests.Response:
    try:
        response = requests.get(url, headers={"User-Agent": USER_AGENT},
                                timeout=HypercertsConfig.HTTP_TIMEOUT_SECONDS)
    except requests.exceptions.RequestException as e:
        raise AuthError(f"identity lookup failed: {e}")
    if response.status_code != 200:
        raise AuthError(f"identity lookup failed: {url} returned {response.status_code}")
    return response


def resolve_handle(handle: str) -> str:
    """Handle -> DID through the well-known endpoint"""
    did = _get(f"https://{handle}/.well-known/atproto-did").text.strip()
    if not is_did(did):
        raise AuthError(f"handle {handle} did not resolve to a DID")
    return did


def resolve_did_document(did: str, plc_host: Optional[str] = None) -> Dict[str, Any]:
    if did.startswith("did:plc:"):
        url = f"{(plc_host or HypercertsConfig.PLC_HOST).rstrip('/')}/{did}"
    elif did.startswith("did:web:"):
        url = f"https://{did[len('did:web:'):]}/.well-known/did.json"
    else:
        raise AuthError(f"unsupported DID method: {did}")
    try:
        return _get(url).json()
    except ValueError as e:
        raise AuthError(f"invalid DID document for {did}: {e}")


def resolve_pds(identifier: str, plc_host: Optional[str] = None) -> Tuple[str, str]:
    """Handle or DID -> (did, pds endpoint)"""
    identifier = identifier.lstrip("@")
    did = identifier if is_did(identifier) else resolve_handle(identifier)
    doc = resolve_did_document(did, plc_host)
    for service in doc.get("service") or []:
        if str(service.get("id", "")).endswith("#atproto_pds") and service.get("serviceEndpoint"):
            return did, service["serviceEndpoint"]
    raise AuthError(f"no PDS endpoint in DID document for {did}")


# ===== Login =====

def login(username: str, password: str, pds_host: str = "", plc_host: Optional[str] = None,
          session_path: Optional[str] = None, persist_refresh: bool = True) -> RepositoryClient:
    """Password login; finds the PDS from the identity when pds_host is empty"""
    if not username or not password:
        raise AuthError("username and password are required")
    pds = pds_host or HypercertsConfig.PDS_HOST
    if not pds:
        _, pds = resolve_pds(username, plc_host)

    data = create_session(pds, username, password)
    session_logger.log_info("LOGIN", "Session created", {"did": data.get("did", ""), "pds": pds})
    return RepositoryClient(
        pds, data.get("did", ""),
        access_jwt=data.get("accessJwt", ""),
        refresh_jwt=data.get("refreshJwt", ""),
        handle=data.get("handle", ""),
        on_refresh=_persist_refreshed(session_path) if persist_refresh else None,
    )


def save_login(client: RepositoryClient, password: str, path: Optional[str] = None) -> AuthSession:
    """Write the session of a freshly logged-in client"""
    sess = AuthSession(did=client.did, pds=client.host, handle=client.handle, password=password,
                       access_token=client.access_jwt, refresh_token=client.refresh_jwt)
    persist_session(sess, path)
    return sess


def load_client(plc_host: Optional[str] = None, path: Optional[str] = None) -> RepositoryClient:
    """Resume the saved session, logging in again with the stored password if it is stale"""
    sess = load_session(path)
    client = RepositoryClient(sess.pds, sess.did, access_jwt=sess.access_token,
                              refresh_jwt=sess.refresh_token, handle=sess.handle,
                              on_refresh=_persist_refreshed(path))
    try:
        client.get_session()
        return client
    except HypercertsError as e:
        session_logger.log_info("SESSION_STALE", "Saved session rejected, logging in again", {"error": str(e)})

    if not sess.password:
        raise AuthError("saved session expired (run: hc account login)")
    client = login(sess.did, sess.password, pds_host=sess.pds, plc_host=plc_host, session_path=path)
    save_login(client, sess.password, path)
    return client


def login_or_load(username: str = "", password: str = "", plc_host: Optional[str] = None,
                  path: Optional[str] = None) -> RepositoryClient:
    """Explicit credentials win; they are used for this run only and never saved"""
    username = username or HypercertsConfig.USERNAME
    password = password or HypercertsConfig.PASSWORD
    if username and password:
        return login(username, password, plc_host=plc_host, persist_refresh=False)
    return load_client(plc_host, path)
