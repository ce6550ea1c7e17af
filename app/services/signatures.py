"""
Webhook Signature Verification
HMAC-SHA256 over the exact raw request body.
"""

import hashlib
import hmac
from typing import Optional, Union

_PREFIX = "sha256="


def sign(raw_body: Union[bytes, str], shared_secret: str) -> str:
    """Hex HMAC-SHA256 of the body, as providers send it."""
    if isinstance(raw_body, str):
        raw_body = raw_body.encode("utf-8")
    return hmac.new(shared_secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()


def verify(raw_body: Union[bytes, str], signature_header: Optional[str], shared_secret: str) -> bool:
    """
    True only if `signature_header` is the HMAC of `raw_body` under
    `shared_secret`. Never raises; an empty secret or header is a mismatch.
    """
    if not shared_secret or not signature_header:
        return False

    try:
        provided = signature_header.strip()
        if provided.lower().startswith(_PREFIX):
            provided = provided[len(_PREFIX):]
        provided_bytes = provided.lower().encode("ascii")
        expected = sign(raw_body, shared_secret).encode("ascii")
    except (UnicodeError, AttributeError, TypeError):
        return False

    return hmac.compare_digest(expected, provided_bytes)


__all__ = ["sign", "verify"]
