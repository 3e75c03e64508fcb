"""HMAC helpers shared by the gateway adapters."""

import hashlib
import hmac


def hmac_sha512(secret: str, data: str) -> str:
    return hmac.new(secret.encode("utf-8"), data.encode("utf-8"), hashlib.sha512).hexdigest()


def hmac_sha256(secret: str, data: str) -> str:
    return hmac.new(secret.encode("utf-8"), data.encode("utf-8"), hashlib.sha256).hexdigest()


def signatures_match(expected: str, provided: str | None) -> bool:
    """Constant-time, case-insensitive comparison of hex digests."""
    if not provided:
        return False
    return hmac.compare_digest(expected.lower(), provided.strip().lower())
