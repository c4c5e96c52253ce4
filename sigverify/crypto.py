"""Detached Ed25519 signature verification.

Keys and signatures travel as base64 text (standard or URL-safe alphabet,
padding optional). Messages are signed over their raw bytes.
"""
import base64
import binascii
from typing import NamedTuple, Optional

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey

from sigverify.models import REASON_SIGNATURE_MISMATCH, REASON_UNVERIFIABLE

PUBLIC_KEY_SIZE = 32
SIGNATURE_SIZE = 64


class Verdict(NamedTuple):
    valid: bool
    reason: Optional[str] = None


def decode_b64(s: str) -> bytes:
    """Decode base64 in either alphabet, tolerating missing padding"""
    s = s.strip().rstrip("=").replace("+", "-").replace("/", "_")
    pad = "=" * (-len(s) % 4)
    try:
        return base64.b64decode((s + pad).encode("ascii"), altchars=b"-_", validate=True)
    except (binascii.Error, UnicodeEncodeError) as e:
        raise ValueError(f"invalid base64: {e}") from e


def verify(signature: bytes, message: bytes, public_key: bytes) -> bool:
    """Check a detached signature; raises ValueError on a malformed key or signature"""
    if len(public_key) != PUBLIC_KEY_SIZE:
        raise ValueError(f"public key must be {PUBLIC_KEY_SIZE} bytes, got {len(public_key)}")
    if len(signature) != SIGNATURE_SIZE:
        raise ValueError(f"signature must be {SIGNATURE_SIZE} bytes, got {len(signature)}")
    pub = Ed25519PublicKey.from_public_bytes(public_key)
    try:
        pub.verify(signature, message)
        return True
    except InvalidSignature:
        return False


def evaluate(signature: str, payload: str, public_key: str) -> Verdict:
    """Verify wire-encoded inputs, folding evaluation errors into an invalid verdict"""
    try:
        ok = verify(decode_b64(signature), payload.encode("utf-8"), decode_b64(public_key))
    except ValueError:
        return Verdict(False, REASON_UNVERIFIABLE)
    if ok:
        return Verdict(True)
    return Verdict(False, REASON_SIGNATURE_MISMATCH)
