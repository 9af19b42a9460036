from datetime import timedelta

import pytest
from werkzeug.security import check_password_hash

from broadcastgw.accounts import AccountDirectory
from broadcastgw.errors import Conflict, Forbidden, InvalidArgument, Unauthorized
from broadcastgw import utils


@pytest.fixture
def directory(storage, clock):
    return AccountDirectory(storage, clock=clock)


def test_register_stores_hash_and_window(directory, storage, clock):
    directory.register("ann@example.com", "15550001", "s3cret")

    account = storage.get_account("ann@example.com")
    assert account["password_hash"] != "s3cret"
    assert check_password_hash(account["password_hash"], "s3cret")
    assert account["is_active"] is True
    start = utils.parse_timestamp(account["session_start"])
    expires = utils.parse_timestamp(account["session_expires"])
    assert start == clock.now
    assert expires - start == timedelta(days=30)


def test_register_twice_conflicts(directory):
    directory.register("ann@example.com", "15550001", "s3cret")
    with pytest.raises(Conflict):
        directory.register("ann@example.com", "15559999", "other")


def test_register_requires_email_and_password(directory):
    with pytest.raises(InvalidArgument):
        directory.register("", "1", "pw")
    with pytest.raises(InvalidArgument):
        directory.register("ann@example.com", "1", "")


def test_login_with_valid_credentials(directory):
    directory.register("ann@example.com", "15550001", "s3cret")
    assert directory.login("ann@example.com", "s3cret") == "ann@example.com"


@pytest.mark.parametrize("email,password", [("ann@example.com", "wrong"), ("nobody@example.com", "s3cret")])
def test_login_rejects_bad_credentials(directory, email, password):
    directory.register("ann@example.com", "15550001", "s3cret")
    with pytest.raises(Unauthorized):
        directory.login(email, password)


def test_expired_login_deactivates_account(directory, storage, clock):
    directory.register("ann@example.com", "15550001", "s3cret")
    registered_at = clock.now
    clock.now = registered_at + timedelta(days=31)

    with pytest.raises(Forbidden):
        directory.login("ann@example.com", "s3cret")
    assert storage.get_account("ann@example.com")["is_active"] is False

    # The flag sticks even inside the original window.
    clock.now = registered_at + timedelta(days=1)
    with pytest.raises(Forbidden):
        directory.login("ann@example.com", "s3cret")


def test_require_active_without_session(directory):
    with pytest.raises(Unauthorized):
        directory.require_active(None)


def test_require_active_rechecks_expiry(directory, clock):
    directory.register("ann@example.com", "15550001", "s3cret")
    assert directory.require_active("ann@example.com")["email"] == "ann@example.com"

    clock.now = clock.now + timedelta(days=30, seconds=1)
    with pytest.raises(Forbidden):
        directory.require_active("ann@example.com")


def test_require_active_rejects_deactivated_or_missing(directory, storage):
    directory.register("ann@example.com", "15550001", "s3cret")
    storage.update_account("ann@example.com", {"is_active": False})
    with pytest.raises(Forbidden):
        directory.require_active("ann@example.com")
    with pytest.raises(Forbidden):
        directory.require_active("ghost@example.com")


def test_login_cleans_email_like_register(directory, storage):
    directory.register(" ann@example.com ", "15550001", "s3cret")

    assert storage.get_account("ann@example.com") is not None
    assert directory.login(" ann@example.com ", "s3cret") == "ann@example.com"
    assert directory.login("ann@example.com", "s3cret") == "ann@example.com"
