import pytest

from sugarrush.logging import (
    _add_request_context,
    _redact_sensitive,
    correlation_id_var,
    get_correlation_id,
    is_sensitive_key,
    mask_value,
    set_correlation_id,
)


@pytest.mark.parametrize(
    "key",
    ["token", "Authorization", "google_access_token", "client_secret", "email", "admin_email",
     "phone_number", "jwt_secret"],
)
def test_sensitive_keys(key):
    assert is_sensitive_key(key)


@pytest.mark.parametrize("key", ["token_store_type", "tokens_revoked", "user_id", "role", "error"])
def test_keys_that_only_mention_a_sensitive_word_are_kept(key):
    assert not is_sensitive_key(key)


def test_redaction_masks_values_and_keeps_diagnostics():
    event = _redact_sensitive(
        None,
        "info",
        {
            "event": "runtime_initialized",
            "token_store_type": "MemoryTokenStore",
            "google_access_token": "ya29.abcdefgh",
            "email": "charlie@example.com",
        },
    )

    assert event["token_store_type"] == "MemoryTokenStore"
    assert event["google_access_token"] == "***efgh"
    assert event["email"] == "ch***@example.com"


def test_short_secret_is_fully_masked():
    assert mask_value("token", "abc") == "***"


def test_request_context_carries_service_and_correlation_id():
    cid = set_correlation_id("req-42")

    event = _add_request_context(None, "info", {"event": "x"})

    assert cid == "req-42" == get_correlation_id()
    assert event["service"] == "sugarrush"
    assert event["correlation_id"] == "req-42"
    correlation_id_var.set(None)
