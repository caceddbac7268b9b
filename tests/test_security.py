"""Tests for signatures, tokens, rate limiting and webhook payload parsing."""

import json
from datetime import timedelta
from unittest.mock import MagicMock
from uuid import uuid4

import pytest
import redis

from app.core.redis_client import RateLimiter
from app.core.security import (
    compute_webhook_signature,
    create_access_token,
    decode_access_token,
    verify_webhook_signature,
)
from app.dependencies import user_id_from_token
from app.schemas.payments import PaymentCorrelation, WebhookOutcome, WebhookPayload


def test_signature_accepts_both_forms() -> None:
    body = b'{"event":"payin.session.completed"}'
    digest = compute_webhook_signature(body, "secret")

    assert verify_webhook_signature(body, digest, "secret")
    assert verify_webhook_signature(body, f"sha256={digest.upper()}", "secret")


def test_signature_rejects_tampering() -> None:
    body = b'{"event":"payin.session.completed"}'
    digest = compute_webhook_signature(body, "secret")

    assert not verify_webhook_signature(body + b" ", digest, "secret")
    assert not verify_webhook_signature(body, digest, "other-secret")
    assert not verify_webhook_signature(body, None, "secret")
    assert not verify_webhook_signature(body, "", "secret")


def test_access_token_round_trip() -> None:
    user_id = uuid4()

    token = create_access_token({"sub": str(user_id)})

    assert decode_access_token(token)["type"] == "access"
    assert user_id_from_token(token) == user_id


def test_expired_or_malformed_tokens() -> None:
    expired = create_access_token({"sub": str(uuid4())}, expires_delta=timedelta(minutes=-5))

    assert user_id_from_token(expired) is None
    assert user_id_from_token("garbage") is None
    assert user_id_from_token(create_access_token({"sub": "not-a-uuid"})) is None


def test_rate_limiter_window() -> None:
    client = MagicMock()
    client.incr.side_effect = [1, 2, 3]
    limiter = RateLimiter(client)

    assert limiter.check_rate_limit("k", limit=2, window=60)
    assert limiter.check_rate_limit("k", limit=2, window=60)
    assert not limiter.check_rate_limit("k", limit=2, window=60)
    client.expire.assert_called_once_with("k", 60)


def test_rate_limiter_fails_open() -> None:
    client = MagicMock()
    client.incr.side_effect = redis.ConnectionError("down")

    assert RateLimiter(client).check_rate_limit("k", limit=1)


@pytest.mark.parametrize(
    ("payload", "outcome"),
    [
        ({"event": "payin.session.completed"}, WebhookOutcome.SUCCESS),
        ({"event": "payin.session.cancelled"}, WebhookOutcome.FAILURE),
        ({"statut": "paid"}, WebhookOutcome.SUCCESS),
        ({"statut": " No Paid "}, WebhookOutcome.FAILURE),
        ({"event": "payin.session.pending"}, WebhookOutcome.UNKNOWN),
        ({"statut": True}, WebhookOutcome.UNKNOWN),
        ({}, WebhookOutcome.UNKNOWN),
    ],
)
def test_webhook_outcome(payload: dict, outcome: WebhookOutcome) -> None:
    assert WebhookPayload.model_validate(payload).outcome is outcome


def test_webhook_field_aliases() -> None:
    payload = WebhookPayload.model_validate(
        {"token_pay": "t1", "montant": "1500", "personalInfo": {}, "numeroSend": "0700"}
    )

    assert payload.token_pay == "t1"
    assert payload.amount == 1500
    assert payload.model_extra == {"numeroSend": "0700"}


def test_correlation_from_every_shape() -> None:
    payment_id, session_id = uuid4(), uuid4()
    info = {"paymentId": str(payment_id), "session_id": str(session_id)}

    for raw in (info, [info], json.dumps(info), json.dumps([info]).encode()):
        correlation = PaymentCorrelation.from_personal_info(raw)
        assert correlation.payment_id == payment_id
        assert correlation.session_id == session_id


@pytest.mark.parametrize("raw", [None, "", "not json", 42, [], ["x"], [{"paymentId": "nope"}]])
def test_correlation_unreadable(raw) -> None:
    assert PaymentCorrelation.from_personal_info(raw).is_empty


def test_correlation_skips_bad_ids_only() -> None:
    patient_id = uuid4()

    correlation = PaymentCorrelation.from_personal_info(
        [{"paymentId": "bad", "patientId": str(patient_id)}]
    )

    assert correlation.payment_id is None
    assert correlation.patient_id == patient_id
