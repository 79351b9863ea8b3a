"""Canonical JSON, HMAC signatures and audit hash chaining."""
import hashlib
import hmac
import json
from typing import Any, Mapping, Optional


def canonical_json(payload: Mapping[str, Any]) -> str:
    """Deterministic JSON encoding: sorted keys, no insignificant whitespace."""
    return json.dumps(
        payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str
    )


def sign_payload(payload: Mapping[str, Any], secret: str) -> str:
    """Hex HMAC-SHA256 of the canonical encoding of ``payload``."""
    return hmac.new(
        secret.encode("utf-8"), canonical_json(payload).encode("utf-8"), hashlib.sha256
    ).hexdigest()


def signatures_match(expected: str, provided: Optional[str]) -> bool:
    """Constant-time signature comparison."""
    if not provided:
        return False
    return hmac.compare_digest(expected.encode("utf-8"), provided.strip().encode("utf-8"))


def chain_hash(prev_hash: str, entry: Mapping[str, Any]) -> str:
    """SHA-256 linking an audit entry to its predecessor."""
    return hashlib.sha256((prev_hash + canonical_json(entry)).encode("utf-8")).hexdigest()
