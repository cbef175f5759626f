from __future__ import annotations

import hashlib
import json
from typing import Any

from flask import has_request_context, request

from dropcart.extensions import db
from dropcart.models import IdempotencyKey


def _canonical_json(payload: Any) -> str:
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)


def _hash_request(*, method: str, path: str, payload: Any) -> str:
    raw = f"{method.strip().upper()}|{path.strip()}|{_canonical_json(payload)}".encode("utf-8")
    return hashlib.sha256(raw).hexdigest()


def get_idempotency_key() -> str | None:
    if not has_request_context():
        return None
    k = request.headers.get("Idempotency-Key") or request.headers.get("X-Idempotency-Key")
    if not k:
        return None
    return k.strip()[:128] or None


def lookup_response(user_id: int | None, route: str, payload: Any, *, idempotency_key: str | None = None):
    """Resolve a replayed request.

    Returns None when no key was sent, ("hit", body, status) for a stored
    response, ("conflict", body, 409) when the key was reused with another
    payload, or ("miss", row, 0) with a fresh row to pass to store_response.
    """
    k = (idempotency_key or get_idempotency_key() or "").strip()[:128]
    if not k:
        return None

    scope = f"{route}:{int(user_id) if user_id is not None else 'anon'}"
    method = request.method if has_request_context() else "POST"
    req_hash = _hash_request(method=method, path=route, payload=payload)

    row = IdempotencyKey.query.filter_by(scope=scope, key=k).first()
    if row is not None:
        if (row.request_hash or "") != req_hash:
            return (
                "conflict",
                {
                    "ok": False,
                    "error": "CONFLICT",
                    "code": "IDEMPOTENCY_KEY_REUSE",
                    "message": "This Idempotency-Key was already used with a different request payload.",
                    "status": 409,
                },
                409,
            )
        if row.response_json:
            return ("hit", json.loads(row.response_json), int(row.status_code or 200))
        return ("hit", {"ok": True}, int(row.status_code or 200))

    row = IdempotencyKey(
        key=k,
        scope=scope,
        user_id=int(user_id) if user_id is not None else None,
        request_hash=req_hash,
    )
    db.session.add(row)
    db.session.commit()
    return ("miss", row, 0)


def store_response(row: IdempotencyKey, response_json: Any, status_code: int) -> None:
    row.response_json = json.dumps(response_json, separators=(",", ":"), default=str)
    row.status_code = int(status_code or 200)
    db.session.add(row)
    db.session.commit()


def release_key(row: IdempotencyKey) -> None:
    """Forget a key whose request failed so the client may retry with it."""
    db.session.delete(row)
    db.session.commit()
