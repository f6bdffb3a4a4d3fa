# pylint: disable=missing-module-docstring,missing-function-docstring
from pathlib import Path

import pytest

from session.credentials import credential_path, stored_identities, validate_identity
from session.errors import ValidationError
from transport.base import MessagingTransport
from transport.loader import load_transport

from fakes import FakeTransport


def test_validate_identity_strips_whitespace() -> None:
    assert validate_identity("  user-1@example.com ") == "user-1@example.com"


@pytest.mark.parametrize("identity", [None, "", "   ", "..", "a/b", "x" * 129])
def test_validate_identity_rejects(identity: str | None) -> None:
    with pytest.raises(ValidationError):
        validate_identity(identity)


def test_credential_path_is_per_identity(tmp_path: Path) -> None:
    assert credential_path(tmp_path, "u1") == tmp_path / "session_u1"


def test_stored_identities(tmp_path: Path) -> None:
    (tmp_path / "session_bob").mkdir()
    (tmp_path / "session_alice").mkdir()
    (tmp_path / "session_bad name").mkdir()
    (tmp_path / "other").mkdir()
    (tmp_path / "session_file").write_text("not a directory")

    assert stored_identities(tmp_path) == ["alice", "bob"]


def test_stored_identities_missing_root(tmp_path: Path) -> None:
    assert stored_identities(tmp_path / "absent") == []


def test_fake_transport_satisfies_protocol() -> None:
    assert isinstance(FakeTransport(), MessagingTransport)


def test_load_transport_from_import_path() -> None:
    transport = load_transport("fakes:FakeTransport")

    assert isinstance(transport, FakeTransport)


def test_load_transport_rejects_malformed_path() -> None:
    with pytest.raises(ValueError):
        load_transport("fakes.FakeTransport")


def test_load_transport_rejects_non_transport() -> None:
    with pytest.raises(TypeError):
        load_transport("builtins:dict")
