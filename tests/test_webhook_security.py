"""Tests for Calendly webhook signature helpers."""

import time

from calint.webhook_security import (
    MAX_WEBHOOK_AGE_SECONDS,
    compute_hmac_sha256,
    constant_time_compare,
    create_webhook_signature,
    parse_signature_header,
    verify_timestamp,
)


def test_signature_header_round_trip():
    header = create_webhook_signature("whsec", b'{"event":"invitee.created"}', timestamp=1700000000)

    timestamp, signature = parse_signature_header(header)

    assert timestamp == "1700000000"
    assert signature == compute_hmac_sha256("whsec", b'1700000000.{"event":"invitee.created"}')


def test_parse_tolerates_spaces_and_unknown_parts():
    assert parse_signature_header("t=1, v1=abc, v0=old") == ("1", "abc")
    assert parse_signature_header("garbage") == (None, None)


def test_constant_time_compare_rejects_empty_values():
    assert constant_time_compare("abc", "abc")
    assert not constant_time_compare("abc", "abd")
    assert not constant_time_compare("", "")


def test_timestamp_window():
    now = int(time.time())

    assert verify_timestamp(str(now))
    assert not verify_timestamp(str(now - MAX_WEBHOOK_AGE_SECONDS - 30))
    assert not verify_timestamp("yesterday")
    assert not verify_timestamp(None)
