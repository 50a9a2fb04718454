"""Tests for session tokens, webhook signatures and delivery de-duplication."""

from datetime import timedelta

from copilot_value.core.security import (
    SessionUser,
    create_session_token,
    decode_session_token,
    sign_webhook_payload,
    verify_webhook_signature,
)
from copilot_value.services.duplicates import DuplicateDeliveryGuard


class TestSessionTokens:
    """Tests for the signed session cookie."""

    def test_round_trip(self):
        user = SessionUser(id="1", username="octocat", display_name="The Octocat")

        decoded = decode_session_token(create_session_token(user))

        assert decoded == user

    def test_expired_token(self):
        user = SessionUser(id="1", username="octocat")

        token = create_session_token(user, expires_delta=timedelta(seconds=-10))

        assert decode_session_token(token) is None

    def test_garbage_token(self):
        assert decode_session_token("not-a-token") is None


class TestWebhookSignatures:
    """Tests for X-Hub-Signature-256 verification."""

    # Example from GitHub's webhook validation docs
    def test_known_signature(self):
        signature = sign_webhook_payload(b"Hello, World!", "It's a Secret to Everybody")

        assert signature == "sha256=757107ea0eb2509fc211221cce984b8a37570b6d7586c22c46f4379c8b043e17"

    def test_verify(self):
        body = b'{"action":"opened"}'

        assert verify_webhook_signature(body, "secret", sign_webhook_payload(body, "secret"))
        assert not verify_webhook_signature(body, "other", sign_webhook_payload(body, "secret"))
        assert not verify_webhook_signature(body, "secret", None)


class TestDuplicateDeliveryGuard:
    """Tests for remembering recent delivery ids."""

    def test_registered_delivery_is_duplicate(self):
        guard = DuplicateDeliveryGuard()
        guard.register("abc")

        assert guard.is_duplicate("abc")
        assert not guard.is_duplicate("def")

    def test_oldest_deliveries_are_forgotten(self):
        guard = DuplicateDeliveryGuard(max_entries=2)
        for delivery in ("a", "b", "c"):
            guard.register(delivery)

        assert not guard.is_duplicate("a")
        assert guard.is_duplicate("b")
        assert guard.is_duplicate("c")
        assert len(guard) == 2

    def test_register_twice_keeps_one_entry(self):
        guard = DuplicateDeliveryGuard()
        guard.register("a")
        guard.register("a")

        assert len(guard) == 1
