"""
Record URI helpers
Parse and build at://<owner>/<collection>/<rkey> identifiers
"""
import re
from dataclasses import dataclass

from hypercerts.core.error_handler import MalformedReferenceError

AT_PREFIX = "at://"

_DID_RE = re.compile(r"^did:[a-z]+:[a-zA-Z0-9._:%-]*[a-zA-Z0-9._-]$")
_HANDLE_RE = re.compile(
    r"^([a-zA-Z0-9]([a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?\.)+[a-zA-Z]([a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?$"
)
_NSID_RE = re.compile(
    r"^[a-zA-Z]([a-zA-Z0-9-]{0,62})?(\.[a-zA-Z0-9]([a-zA-Z0-9-]{0,62})?)+(\.[a-zA-Z]([a-zA-Z0-9]{0,62})?)$"
)
_RKEY_RE = re.compile(r"^[A-Za-z0-9._:~-]{1,512}$")


@dataclass(frozen=True)
class RecordURI:
    """A parsed Record URI"""
    owner: str
    collection: str
    rkey: str

    def __str__(self) -> str:
        return f"{AT_PREFIX}{self.owner}/{self.collection}/{self.rkey}"


def is_did(value: str) -> bool:
    return bool(_DID_RE.match(value))


def parse_record_uri(uri: str) -> RecordURI:
    """
    Split a Record URI into owner, collection and record key.
    Raises MalformedReferenceError for anything that is not a full record URI.
    """
    if not isinstance(uri, str) or not uri.startswith(AT_PREFIX):
        raise MalformedReferenceError(uri, "missing at:// prefix")

    rest = uri[len(AT_PREFIX):]
    # Query/fragment parts are not part of a record address
    rest = rest.split("#", 1)[0].split("?", 1)[0]
    parts = rest.split("/")
    if len(parts) != 3:
        raise MalformedReferenceError(uri, "expected owner/collection/rkey")

    owner, collection, rkey = parts
    if not (is_did(owner) or _HANDLE_RE.match(owner)):
        raise MalformedReferenceError(uri, f"bad authority {owner!r}")
    if not _NSID_RE.match(collection):
        raise MalformedReferenceError(uri, f"bad collection {collection!r}")
    if not _RKEY_RE.match(rkey) or rkey in (".", ".."):
        raise MalformedReferenceError(uri, f"bad record key {rkey!r}")

    return RecordURI(owner=owner, collection=collection, rkey=rkey)


def build_record_uri(owner: str, collection: str, rkey: str) -> str:
    return str(RecordURI(owner=owner, collection=collection, rkey=rkey))


def resolve_record_uri(owner: str, collection: str, id_or_uri: str) -> str:
    """Resolve a short record key or a full Record URI to a full Record URI"""
    if id_or_uri.startswith(AT_PREFIX):
        return id_or_uri
    return build_record_uri(owner, collection, id_or_uri)


def extract_rkey(uri: str) -> str:
    """
    Record key (last segment) of a Record URI.

    Upstream data can hold partially resolved references, so this never
    raises: unparseable input falls back to naive splitting and finally to
    the input itself.
    """
    try:
        return parse_record_uri(uri).rkey
    except MalformedReferenceError:
        stripped = uri[len(AT_PREFIX):] if uri.startswith(AT_PREFIX) else uri
        parts = stripped.split("/")
        if len(parts) >= 3:
            return parts[2]
        return uri
