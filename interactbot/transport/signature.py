# interactbot/transport/signature.py
"""
Ed25519 request signature verification for inbound interactions.

The platform signs ``timestamp + raw_body`` with the application's private
key and sends the hex signature and the timestamp in headers. Verification
must run on the exact bytes received, before any JSON decoding.

``check`` raises AuthenticationError naming the failure (missing header,
bad hex, wrong length, stale timestamp, mismatch); ``verify`` is the
boolean form. Callers treat every failure the same way.
"""
from __future__ import annotations

import time

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey

from interactbot.core.errors import AuthenticationError, ConfigurationError

SIGNATURE_HEADER = "X-Signature-Ed25519"
TIMESTAMP_HEADER = "X-Signature-Timestamp"

ED25519_SIGNATURE_LENGTH = 64


class SignatureVerifier:
    """Verify interaction signatures against the application's public key."""

    def __init__(self, public_key_hex: str, max_skew_seconds: int | None = None):
        try:
            self._public_key = Ed25519PublicKey.from_public_bytes(
                bytes.fromhex(public_key_hex)
            )
        except ValueError as exc:
            raise ConfigurationError("Invalid Ed25519 public key") from exc
        self._max_skew = max_skew_seconds

    def check(
        self,
        body: bytes,
        signature: str | None,
        timestamp: str | None,
        *,
        now: float | None = None,
    ) -> None:
        """Raise AuthenticationError unless ``signature`` is valid for ``timestamp + body``."""
        if not signature or not timestamp:
            raise AuthenticationError("Missing signature headers")

        try:
            sig_bytes = bytes.fromhex(signature)
        except ValueError:
            raise AuthenticationError("Signature is not hex") from None
        if len(sig_bytes) != ED25519_SIGNATURE_LENGTH:
            raise AuthenticationError("Signature has the wrong length")

        if self._max_skew is not None and not self._timestamp_fresh(timestamp, now):
            raise AuthenticationError("Signature timestamp outside allowed skew")

        try:
            self._public_key.verify(sig_bytes, timestamp.encode("utf-8") + body)
        except InvalidSignature:
            raise AuthenticationError("Signature does not match") from None

    def verify(
        self,
        body: bytes,
        signature: str | None,
        timestamp: str | None,
        *,
        now: float | None = None,
    ) -> bool:
        try:
            self.check(body, signature, timestamp, now=now)
        except AuthenticationError:
            return False
        return True

    def _timestamp_fresh(self, timestamp: str, now: float | None) -> bool:
        try:
            ts = int(timestamp)
        except ValueError:
            return False
        current = time.time() if now is None else now
        return abs(current - ts) <= self._max_skew
