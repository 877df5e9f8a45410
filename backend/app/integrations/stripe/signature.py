from __future__ import annotations

import hashlib
import hmac
import json
from dataclasses import dataclass, field
from datetime import UTC, datetime

from app.domain.errors import InvalidSignature, VerificationError

DEFAULT_TOLERANCE_SECONDS = 300


@dataclass(frozen=True)
class VerifiedEvent:
    id: str
    type: str
    data_object: dict = field(default_factory=dict)
    created: int | None = None
    livemode: bool = False


def compute_signature(*, payload_bytes: bytes, timestamp: str, secret: str) -> str:
    signed_payload = f"{timestamp}.".encode("utf-8") + payload_bytes
    return hmac.new(secret.encode("utf-8"), signed_payload, hashlib.sha256).hexdigest()


def _parse_signature_header(signature_header: str) -> tuple[str | None, list[str]]:
    timestamp = None
    signatures: list[str] = []
    for chunk in signature_header.split(","):
        if "=" not in chunk:
            continue
        key, value = chunk.split("=", 1)
        key = key.strip()
        if key == "t":
            timestamp = value.strip()
        elif key == "v1":
            signatures.append(value.strip())
    return timestamp, signatures


def verify_webhook_event(
    *,
    payload_bytes: bytes,
    signature_header: str | None,
    secret: str | None,
    tolerance_seconds: int = DEFAULT_TOLERANCE_SECONDS,
    now: datetime | None = None,
) -> VerifiedEvent:
    """
    Check a Stripe webhook delivery against the endpoint secret and parse it.

    The signature covers the exact request bytes, so ``payload_bytes`` must be
    the raw body. Every ``v1`` entry in the header is tried; Stripe sends more
    than one while a secret is being rolled.
    """
    if not secret:
        raise InvalidSignature("Webhook secret is not configured")
    if not signature_header:
        raise InvalidSignature("No signature")

    timestamp, signatures = _parse_signature_header(signature_header)
    if not timestamp or not signatures:
        raise InvalidSignature("Unable to extract timestamp and signatures from header")

    try:
        signed_at = int(timestamp)
    except ValueError as exc:
        raise InvalidSignature("Invalid signature timestamp") from exc

    current = int((now or datetime.now(UTC)).timestamp())
    if abs(current - signed_at) > max(1, tolerance_seconds):
        raise InvalidSignature("Timestamp outside the tolerance zone")

    expected = compute_signature(payload_bytes=payload_bytes, timestamp=timestamp, secret=secret)
    if not any(hmac.compare_digest(expected, candidate) for candidate in signatures):
        raise InvalidSignature("No signatures found matching the expected signature for payload")

    return _parse_event(payload_bytes)


def _parse_event(payload_bytes: bytes) -> VerifiedEvent:
    try:
        payload = json.loads(payload_bytes.decode("utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise VerificationError("Invalid payload") from exc
    if not isinstance(payload, dict):
        raise VerificationError("Invalid payload")

    event_id = str(payload.get("id") or "").strip()
    event_type = str(payload.get("type") or "").strip()
    if not event_id or not event_type:
        raise VerificationError("Event id and type are required")

    data = payload.get("data") or {}
    if not isinstance(data, dict):
        raise VerificationError("Event data must be a JSON object")
    data_object = data.get("object") or {}
    if not isinstance(data_object, dict):
        raise VerificationError("Event data object must be a JSON object")

    created = payload.get("created")
    return VerifiedEvent(
        id=event_id,
        type=event_type,
        data_object=data_object,
        created=int(created) if isinstance(created, int) else None,
        livemode=bool(payload.get("livemode", False)),
    )
