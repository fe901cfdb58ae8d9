"""Identity provider storing account records in the graph itself."""

from __future__ import annotations

import asyncio
import base64
import hashlib
import hmac
import secrets
from typing import Any, Dict, Optional

from .auth import Identity
from .rooms import alias_record_path, user_path
from .streams import GraphStore

PBKDF2_ITERATIONS = 100_000
MIN_SECRET_LENGTH = 8

ERR_ALIAS_REQUIRED = "alias_required"
ERR_ALIAS_INVALID = "alias_invalid"
ERR_SECRET_TOO_SHORT = "password_too_short"
ERR_ALREADY_CREATED = "user_already_created"
ERR_WRONG_CREDENTIALS = "wrong_user_or_password"
ERR_STORE_UNAVAILABLE = "store_unavailable"


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def _b64url_decode(data: str) -> bytes:
    padding = "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(data + padding)


def _derive_proof(secret: str, salt: bytes) -> bytes:
    return hashlib.pbkdf2_hmac("sha256", secret.encode("utf-8"), salt, PBKDF2_ITERATIONS)


def _generate_public_key() -> str:
    # hex keeps public keys free of the room id separator and path slashes
    return hashlib.sha256(secrets.token_bytes(32)).hexdigest()


class GraphIdentityProvider:
    """Accounts live at ``~@alias`` as ``{pub, salt, proof}``; the alias is
    also written to ``~pub/alias`` so other clients can read it back."""

    def __init__(self, store: GraphStore) -> None:
        self._store = store
        self._current: Optional[Identity] = None

    @property
    def current_identity(self) -> Optional[Identity]:
        return self._current

    async def create(self, alias: str, secret: str) -> Dict[str, Any]:
        alias = (alias or "").strip()
        if not alias:
            return {"err": ERR_ALIAS_REQUIRED}
        if "/" in alias or "\n" in alias:
            return {"err": ERR_ALIAS_INVALID}
        if len(secret or "") < MIN_SECRET_LENGTH:
            return {"err": ERR_SECRET_TOO_SHORT}
        try:
            existing = await self._store.read_once(alias_record_path(alias))
        except asyncio.TimeoutError:
            return {"err": ERR_STORE_UNAVAILABLE}
        if existing is not None:
            return {"err": ERR_ALREADY_CREATED}

        public_key = _generate_public_key()
        salt = secrets.token_bytes(16)
        record = {
            "pub": public_key,
            "salt": _b64url(salt),
            "proof": _b64url(_derive_proof(secret, salt)),
        }
        self._store.put(alias_record_path(alias), record)
        self._store.put(user_path(public_key, "alias"), alias)
        return {"ok": 0, "pub": public_key}

    async def authenticate(self, alias: str, secret: str) -> Dict[str, Any]:
        alias = (alias or "").strip()
        if not alias:
            return {"err": ERR_ALIAS_REQUIRED}
        try:
            record = await self._store.read_once(alias_record_path(alias))
        except asyncio.TimeoutError:
            return {"err": ERR_STORE_UNAVAILABLE}
        if not isinstance(record, dict):
            return {"err": ERR_WRONG_CREDENTIALS}
        try:
            salt = _b64url_decode(str(record["salt"]))
            expected = _b64url_decode(str(record["proof"]))
            public_key = str(record["pub"])
        except (KeyError, ValueError):
            return {"err": ERR_WRONG_CREDENTIALS}
        if not hmac.compare_digest(_derive_proof(secret or "", salt), expected):
            return {"err": ERR_WRONG_CREDENTIALS}
        self._current = Identity(public_key=public_key, alias=alias)
        return {"ok": 0, "pub": public_key}

    def leave(self) -> None:
        self._current = None

    def recall(self, identity: Identity) -> None:
        self._current = identity
