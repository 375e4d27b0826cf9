"""
Auth session tests: session file handling, identity resolution, resume/re-login
"""

import json
import os
import stat

import pytest
from unittest.mock import MagicMock, patch

from hypercerts.atproto import session as session_mod
from hypercerts.atproto.client import RepositoryClient
from hypercerts.atproto.session import (
    AuthSession,
    persist_session,
    load_session,
    wipe_session,
    resolve_pds,
    load_client,
    login_or_load,
)
from hypercerts.core.error_handler import AuthError, NoAuthSessionError

DID = "did:plc:alice123"


@pytest.fixture
def session_file(tmp_path):
    return str(tmp_path / "state" / "hc" / "auth-session.json")


@pytest.fixture
def saved(session_file):
    sess = AuthSession(did=DID, pds="https://pds.test", handle="alice.test", password="app-pw",
                       access_token="access-1", refresh_token="refresh-1")
    persist_session(sess, session_file)
    return sess


def http_response(status=200, body=None, text=""):
    r = MagicMock()
    r.status_code = status
    r.json.return_value = body
    r.text = text
    return r


# =============================================================================
# SESSION FILE
# =============================================================================

class TestSessionFile:

    def test_round_trip_with_private_mode(self, saved, session_file):
        loaded = load_session(session_file)

        assert loaded == saved
        assert stat.S_IMODE(os.stat(session_file).st_mode) == 0o600

    def test_missing_file(self, session_file):
        with pytest.raises(NoAuthSessionError) as exc:
            load_session(session_file)
        assert "hc account login" in str(exc.value)

    def test_corrupt_file(self, session_file):
        os.makedirs(os.path.dirname(session_file))
        with open(session_file, "w") as f:
            f.write("{not json")
        with pytest.raises(AuthError):
            load_session(session_file)

    def test_unknown_keys_ignored(self, session_file):
        os.makedirs(os.path.dirname(session_file))
        with open(session_file, "w") as f:
            json.dump({"did": DID, "pds": "https://pds.test", "extra": 1}, f)
        assert load_session(session_file).did == DID

    def test_wipe(self, saved, session_file):
        wipe_session(session_file)
        assert not os.path.exists(session_file)
        wipe_session(session_file)

    def test_refresh_callback_keeps_password(self, saved, session_file):
        client = RepositoryClient("https://pds.test", DID, access_jwt="access-2",
                                  refresh_jwt="refresh-2", http=MagicMock(headers={}))
        session_mod._persist_refreshed(session_file)(client)

        loaded = load_session(session_file)
        assert loaded.access_token == "access-2"
        assert loaded.refresh_token == "refresh-2"
        assert loaded.password == "app-pw"


# =============================================================================
# IDENTITY
# =============================================================================

class TestIdentity:

    def test_handle_to_pds(self):
        doc = {"id": DID, "service": [
            {"id": "#atproto_pds", "type": "AtprotoPersonalDataServer", "serviceEndpoint": "https://pds.test"}
        ]}
        with patch("hypercerts.atproto.session.requests.get") as get:
            get.side_effect = [http_response(text=DID + "\n"), http_response(body=doc)]
            did, pds = resolve_pds("@alice.test", plc_host="https://plc.test")

        assert (did, pds) == (DID, "https://pds.test")
        assert get.call_args_list[0][0][0] == "https://alice.test/.well-known/atproto-did"
        assert get.call_args_list[1][0][0] == f"https://plc.test/{DID}"

    def test_did_web(self):
        doc = {"service": [{"id": "did:web:example.org#atproto_pds", "serviceEndpoint": "https://pds.example.org"}]}
        with patch("hypercerts.atproto.session.requests.get", return_value=http_response(body=doc)) as get:
            did, pds = resolve_pds("did:web:example.org")

        assert pds == "https://pds.example.org"
        assert get.call_args[0][0] == "https://example.org/.well-known/did.json"

    def test_no_pds_in_document(self):
        with patch("hypercerts.atproto.session.requests.get", return_value=http_response(body={"service": []})):
            with pytest.raises(AuthError):
                resolve_pds(DID)

    def test_handle_lookup_failure(self):
        with patch("hypercerts.atproto.session.requests.get", return_value=http_response(404)):
            with pytest.raises(AuthError):
                resolve_pds("nobody.test")


# =============================================================================
# RESUME / LOGIN
# =============================================================================

class TestLoadClient:

    def test_resume_valid_session(self, saved, session_file):
        with patch.object(RepositoryClient, "get_session", return_value={"did": DID}):
            client = load_client(path=session_file)

        assert client.did == DID
        assert client.access_jwt == "access-1"
        assert client.host == "https://pds.test"

    def test_stale_session_logs_in_again(self, saved, session_file):
        fresh = RepositoryClient("https://pds.test", DID, access_jwt="access-9", refresh_jwt="refresh-9",
                                 handle="alice.test", http=MagicMock(headers={}))
        with patch.object(RepositoryClient, "get_session", side_effect=AuthError("expired")), \
                patch("hypercerts.atproto.session.login", return_value=fresh) as login:
            client = load_client(path=session_file)

        assert client is fresh
        assert login.call_args[0][:2] == (DID, "app-pw")
        assert load_session(session_file).access_token == "access-9"

    def test_stale_session_without_password(self, session_file):
        persist_session(AuthSession(did=DID, pds="https://pds.test", access_token="a"), session_file)
        with patch.object(RepositoryClient, "get_session", side_effect=AuthError("expired")):
            with pytest.raises(AuthError):
                load_client(path=session_file)

    def test_explicit_credentials_win(self, saved, session_file):
        with patch("hypercerts.atproto.session.login") as login:
            login_or_load("bob.test", "pw", path=session_file)

        login.assert_called_once()
        assert login.call_args[0][:2] == ("bob.test", "pw")
        assert login.call_args[1]["persist_refresh"] is False

    def test_no_session_no_credentials(self, session_file):
        with patch.object(session_mod.HypercertsConfig, "USERNAME", ""), \
                patch.object(session_mod.HypercertsConfig, "PASSWORD", ""):
            with pytest.raises(NoAuthSessionError):
                login_or_load(path=session_file)
