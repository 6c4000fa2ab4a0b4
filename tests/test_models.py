"""Tests for the stored record types."""

from relay_hub.models import (
    LinkedAccount,
    PeerIdentity,
    PendingVerification,
    peer_pk,
)

from .conftest import PEER_ID, make_account, make_pending


class TestKeys:
    def test_peer_pk(self):
        assert peer_pk("123") == "PEER#123"

    def test_account_keys(self):
        account = make_account()
        assert account.to_item()["sk"] == "ACCOUNT#uuid-steve"
        assert account.to_user_item()["sk"] == "USER#42"
        assert account.to_item()["pk"] == account.to_user_item()["pk"] == f"PEER#{PEER_ID}"


class TestLinkedAccount:
    def test_round_trip_keeps_role(self):
        account = make_account()
        restored = LinkedAccount.from_item(account.to_item())

        assert restored.external_username == "Steve"
        assert restored.role == "2000"
        assert restored.linked_at

    def test_lowercase_username_stored(self):
        item = make_account(username="MixedCase").to_item()
        assert item["external_username_lower"] == "mixedcase"

    def test_role_omitted_when_unset(self):
        account = make_account()
        account.role = None
        assert "role" not in account.to_item()
        assert LinkedAccount.from_item(account.to_item()).role is None

    def test_to_wire(self):
        wire = make_account().to_wire()
        assert wire == {
            "user": "discord-steve",
            "userID": "42",
            "roleID": "2000",
            "serverID": PEER_ID,
            "username": "Steve",
            "uuid": "uuid-steve",
        }


class TestPeerIdentity:
    def test_round_trip(self):
        identity = PeerIdentity(peer_id=PEER_ID, token="tok")
        item = identity.to_item()

        assert item["sk"] == "IDENTITY"
        assert PeerIdentity.from_item(item).token == "tok"


class TestPendingVerification:
    def test_never_expires_without_deadline(self):
        assert make_pending(expires_at=0).is_expired(now=10**12) is False

    def test_expiry(self):
        pending = make_pending(expires_at=100)
        assert pending.is_expired(now=99) is False
        assert pending.is_expired(now=100) is True

    def test_round_trip(self):
        item = make_pending(code="c0de", expires_at=500).to_item()
        restored = PendingVerification.from_item(item)

        assert item["sk"] == "PENDING#uuid-steve"
        assert restored.code == "c0de"
        assert restored.expires_at == 500
        assert restored.channel_id == "10"
