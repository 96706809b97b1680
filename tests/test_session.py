"""
Session, saved-session format and identifier generation.
"""
import json

import pytest
from yarl import URL

from oob_hunter.errors import ConfigurationError, StateError
from oob_hunter.session import (
    ClientState,
    Session,
    SessionInfo,
    load_session_file,
    save_session_file,
)
from oob_hunter.utils import ID_ALPHABET, generate_random_id, new_token


class TestRandomId:
    @pytest.mark.parametrize("length", [1, 13, 20, 64])
    def test_length_and_alphabet(self, length):
        value = generate_random_id(length)
        assert len(value) == length
        assert set(value) <= set(ID_ALPHABET)

    def test_values_differ(self):
        assert len({generate_random_id(20) for _ in range(50)}) == 50

    @pytest.mark.parametrize("length", [0, -3])
    def test_invalid_length(self, length):
        with pytest.raises(ConfigurationError):
            generate_random_id(length)

    def test_token_is_uuid(self):
        assert len(new_token()) == 36


class TestSession:
    def test_defaults(self):
        s = Session(server_url="https://oast.site", correlation_id="c" * 20, secret_key="s" * 13)
        assert s.state is ClientState.IDLE
        assert s.polling_interval_ms == 5000
        assert s.host == "oast.site"
        assert isinstance(s.server_url, URL)

    @pytest.mark.parametrize("url", ["oast.site", "/relative", "ftp://oast.site", ""])
    def test_rejects_bad_server_url(self, url):
        with pytest.raises(ConfigurationError):
            Session(server_url=url, correlation_id="c", secret_key="s")

    def test_rejects_non_positive_interval(self):
        with pytest.raises(ConfigurationError):
            Session(server_url="https://oast.site", correlation_id="c", secret_key="s", polling_interval_ms=0)

    def test_identity_is_frozen(self):
        s = Session(server_url="https://oast.site", correlation_id="c", secret_key="s")
        with pytest.raises(StateError):
            s.correlation_id = "other"
        with pytest.raises(StateError):
            s.secret_key = "other"
        s.token = "new-token"
        assert s.token == "new-token"

    def test_info(self):
        s = Session(server_url="https://oast.site", correlation_id="c", secret_key="s", token="t")
        assert s.info().to_dict() == {
            "serverURL": "https://oast.site",
            "token": "t",
            "correlationID": "c",
            "secretKey": "s",
        }

    def test_info_incomplete(self):
        s = Session(server_url="https://oast.site", correlation_id="", secret_key="s")
        with pytest.raises(ConfigurationError):
            s.info()


class TestSessionInfo:
    def test_json_round_trip(self):
        info = SessionInfo(server_url="https://oast.site", token="t", correlation_id="c", secret_key="s")
        assert SessionInfo.from_json(info.to_json()) == info

    def test_missing_fields(self):
        with pytest.raises(ConfigurationError):
            SessionInfo.from_dict({"serverURL": "https://oast.site", "token": "t"})

    def test_token_optional(self):
        info = SessionInfo.from_dict({"serverURL": "https://oast.site", "correlationID": "c", "secretKey": "s"})
        assert info.token == ""

    def test_bad_json(self):
        with pytest.raises(ConfigurationError):
            SessionInfo.from_json("{nope")

    def test_file_round_trip(self, tmp_path):
        info = SessionInfo(server_url="https://oast.site", token="t", correlation_id="c", secret_key="s")
        path = save_session_file(tmp_path / "nested" / "session.json", info)
        assert json.loads(path.read_text())["correlationID"] == "c"
        assert load_session_file(path) == info

    def test_load_missing_file(self, tmp_path):
        assert load_session_file(tmp_path / "absent.json") is None
