# rsvp_engine/domain/qr_payload.py

"""
Ticket QR payload codec.

The payload is a compact JSON object encoded as standard base64. It is an
internal contract between the ticket issuer and the check-in scanner, not a
public wire format.

Without a secret the checksum is a random token that travels with the
payload but is never verified. With a secret it becomes a truncated
HMAC-SHA256 over the identity fields and decoding rejects tampered payloads.
"""

import base64
import binascii
import hashlib
import hmac
import json
import os
import secrets
from dataclasses import dataclass
from datetime import datetime

from rsvp_engine.domain.exceptions import InvalidPayloadError

_CHECKSUM_LENGTH = 16


@dataclass(frozen=True)
class QrPayload:
    rsvp_id: str
    user_id: str
    event_id: str
    issued_at: datetime
    checksum: str


class QrCodec:

    def __init__(self, secret: str | None = None):
        self._secret = secret.encode("utf-8") if secret else None

    @classmethod
    def from_env(cls) -> "QrCodec":
        return cls(os.getenv("TICKET_QR_SECRET") or None)

    @property
    def verifies_checksum(self) -> bool:
        return self._secret is not None

    def build(
        self,
        rsvp_id: str,
        user_id: str,
        event_id: str,
        issued_at: datetime,
    ) -> QrPayload:
        if self._secret:
            checksum = self._sign(rsvp_id, user_id, event_id, issued_at)
        else:
            checksum = secrets.token_hex(_CHECKSUM_LENGTH // 2)

        return QrPayload(
            rsvp_id=rsvp_id,
            user_id=user_id,
            event_id=event_id,
            issued_at=issued_at,
            checksum=checksum,
        )

    def encode(self, payload: QrPayload) -> str:
        document = {
            "rsvpId": payload.rsvp_id,
            "userId": payload.user_id,
            "eventId": payload.event_id,
            "timestamp": payload.issued_at.isoformat(),
            "checksum": payload.checksum,
        }
        raw = json.dumps(document, separators=(",", ":"), sort_keys=True)
        return base64.b64encode(raw.encode("utf-8")).decode("ascii")

    def decode(self, encoded: str) -> QrPayload:
        """
        Raises InvalidPayloadError for anything that is not a payload
        produced by ``encode``.
        """
        if not isinstance(encoded, str) or not encoded.strip():
            raise InvalidPayloadError("Empty QR payload")

        try:
            raw = base64.b64decode(encoded.strip(), validate=True)
            document = json.loads(raw.decode("utf-8"))
            payload = QrPayload(
                rsvp_id=_required_str(document, "rsvpId"),
                user_id=_required_str(document, "userId"),
                event_id=_required_str(document, "eventId"),
                issued_at=datetime.fromisoformat(
                    _required_str(document, "timestamp")
                ),
                checksum=_required_str(document, "checksum"),
            )
        except (binascii.Error, ValueError, KeyError, TypeError) as exc:
            raise InvalidPayloadError("Invalid QR code format") from exc

        if self._secret:
            expected = self._sign(
                payload.rsvp_id,
                payload.user_id,
                payload.event_id,
                payload.issued_at,
            )
            if not hmac.compare_digest(expected, payload.checksum):
                raise InvalidPayloadError("QR code checksum mismatch")

        return payload

    def _sign(
        self,
        rsvp_id: str,
        user_id: str,
        event_id: str,
        issued_at: datetime,
    ) -> str:
        message = "|".join([rsvp_id, user_id, event_id, issued_at.isoformat()])
        digest = hmac.new(self._secret, message.encode("utf-8"), hashlib.sha256)
        return digest.hexdigest()[:_CHECKSUM_LENGTH]


def _required_str(document: dict, key: str) -> str:
    value = document[key]
    if not isinstance(value, str) or not value:
        raise TypeError(f"QR field {key} must be a non-empty string")
    return value
