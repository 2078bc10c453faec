import pytest

from auth import ADMIN_ROLE, AuthorizationGate
from errors import AuthorizationError


@pytest.fixture
def gate(db):
    db.add_api_token("admin-token", "admin-1")
    db.grant_role("admin-1", ADMIN_ROLE)
    db.add_api_token("user-token", "user-1")
    return AuthorizationGate(db, service_token="svc-token", internal_secret="internal-secret")


def status_of(gate, *args, **kwargs):
    with pytest.raises(AuthorizationError) as excinfo:
        gate.authorize(*args, **kwargs)
    return excinfo.value.status_code


@pytest.mark.parametrize("header", [None, "", "Bearer", "Bearer   ", "Basic YWRtaW46cHc=", "admin-token"])
def test_missing_or_malformed_credentials_are_401(gate, header):
    assert status_of(gate, header) == 401


def test_unknown_token_is_401(gate):
    assert status_of(gate, "Bearer not-a-token") == 401


def test_user_without_admin_role_is_403(gate):
    assert status_of(gate, "Bearer user-token") == 403


def test_admin_user(gate):
    identity = gate.authorize("Bearer admin-token")
    assert identity.role == "admin"
    assert identity.user_id == "admin-1"
    assert identity.may_ingest


def test_service_token(gate):
    identity = gate.authorize("bearer svc-token")
    assert identity.role == "service"
    assert identity.user_id is None


def test_internal_marker_on_single_source_path(gate):
    identity = gate.authorize(None, internal_marker="internal-secret", allow_internal=True)
    assert identity.role == "internal"


def test_internal_marker_ignored_where_not_allowed(gate):
    assert status_of(gate, None, internal_marker="internal-secret", allow_internal=False) == 401


def test_wrong_internal_marker_falls_back_to_bearer(gate):
    assert status_of(gate, None, internal_marker="guess", allow_internal=True) == 401
    identity = gate.authorize("Bearer admin-token", internal_marker="guess", allow_internal=True)
    assert identity.role == "admin"


def test_blank_secrets_never_match(db):
    gate = AuthorizationGate(db, service_token="", internal_secret="")
    assert status_of(gate, None, internal_marker="", allow_internal=True) == 401
    assert status_of(gate, None, internal_marker="true", allow_internal=True) == 401
    assert status_of(gate, "Bearer ") == 401
