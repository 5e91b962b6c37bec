import hmac
import hashlib
from typing import Optional


class VerificationFailure(Exception):
    """
    Raised when a webhook delivery does not carry a valid signature.
    """
    pass


def verify_signature(payload: bytes, signature: Optional[str], secret: Optional[str]) -> bool:
    """
    Verify GitHub webhook signature using HMAC SHA-256.

    Returns False on any validation failure.
    """
    if not signature:
        return False

    if not secret:
        return False

    try:
        return hmac.compare_digest(sign_payload(payload, secret), signature.strip())
    except Exception:
        # Never raise from signature verification
        return False


def ensure_signature(payload: bytes, signature: Optional[str], secret: Optional[str]) -> None:
    if not verify_signature(payload, signature, secret):
        raise VerificationFailure("Invalid or missing X-Hub-Signature-256")


def sign_payload(payload: bytes, secret: str) -> str:
    """
    Build the X-Hub-Signature-256 value GitHub would send for a payload.
    """
    mac = hmac.new(secret.encode(), msg=payload, digestmod=hashlib.sha256)
    return "sha256=" + mac.hexdigest()
