"""
access_roster.roles.codec

Conversion between role descriptors and persisted role keys.

Responsibilities:
- Encode roles under one of three storage modes (plain, hashed, encrypted).
- Decode persisted keys back to registered roles, failing loudly on unknown keys.
- Keep the application secret injected, never read from globals.
"""

from __future__ import annotations

import base64
import enum
import hashlib
import hmac
from collections.abc import Callable, Iterable

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESSIV

from access_roster.errors import CodecError, RoleNotFound
from access_roster.observability.logging import get_logger
from access_roster.roles.descriptor import RoleDescriptor

log = get_logger(__name__)

SecretSource = str | Callable[[], str]


class KeyStorage(enum.StrEnum):
    plain = "plain"
    hashed = "hashed"
    encrypted = "encrypted"


class KeyCodec:
    def __init__(
        self,
        mode: KeyStorage | str,
        secret: SecretSource | None = None,
        *,
        allow_plain_fallback: bool = False,
    ) -> None:
        self.mode = KeyStorage(mode)
        self.allow_plain_fallback = allow_plain_fallback
        self._secret = secret
        self._secret_bytes: bytes | None = None
        self._cipher: AESSIV | None = None
        if self.mode is not KeyStorage.plain and secret is None:
            raise ValueError(f"{self.mode} key storage requires an application secret")

    # Secret handling -------------------------------------------------------

    def _secret_value(self) -> bytes:
        if self._secret_bytes is None:
            raw = self._secret() if callable(self._secret) else self._secret
            if not raw:
                raise CodecError("application secret is empty")
            self._secret_bytes = raw.encode("utf-8")
        return self._secret_bytes

    def _aead(self) -> AESSIV:
        if self._cipher is None:
            # AES-SIV is deterministic, so equal roles keep equal keys and stay queryable.
            self._cipher = AESSIV(hashlib.sha512(self._secret_value()).digest())
        return self._cipher

    # Encoding --------------------------------------------------------------

    def encode(self, role: RoleDescriptor, mode: KeyStorage | str | None = None) -> str:
        mode = KeyStorage(mode) if mode is not None else self.mode
        plain = role.plain_key
        if mode is KeyStorage.plain:
            return plain
        if mode is KeyStorage.hashed:
            return self._digest(plain)
        token = self._aead().encrypt(plain.encode("utf-8"), None)
        return base64.urlsafe_b64encode(token).decode("ascii")

    def _digest(self, plain: str) -> str:
        return hmac.new(self._secret_value(), plain.encode("utf-8"), hashlib.sha256).hexdigest()

    def accepted_keys(self, role: RoleDescriptor) -> tuple[str, ...]:
        """Every persisted key that counts as `role` under the active mode."""

        encoded = self.encode(role)
        if (
            self.mode is KeyStorage.encrypted
            and self.allow_plain_fallback
            and role.plain_key != encoded
        ):
            return (encoded, role.plain_key)
        return (encoded,)

    # Decoding --------------------------------------------------------------

    def decode(
        self,
        key: str,
        roles: Iterable[RoleDescriptor],
        mode: KeyStorage | str | None = None,
    ) -> RoleDescriptor:
        mode = KeyStorage(mode) if mode is not None else self.mode
        by_plain = {role.plain_key: role for role in roles}

        if mode is KeyStorage.plain:
            role = by_plain.get(key)
            if role is None:
                raise RoleNotFound(key)
            return role

        if mode is KeyStorage.hashed:
            for plain, role in by_plain.items():
                if hmac.compare_digest(self._digest(plain), key):
                    return role
            raise CodecError(f"stored role key matches no registered role: {key[:12]}...")

        plain = self._decrypt(key)
        if plain is not None:
            role = by_plain.get(plain)
            if role is None:
                raise RoleNotFound(plain)
            return role

        if not self.allow_plain_fallback:
            raise CodecError("stored role key could not be decrypted")
        role = by_plain.get(key)
        if role is None:
            raise CodecError(
                "stored role key could not be decrypted and is not a registered plain key"
            )
        log.warning("roster.codec.plain_key_fallback", role=role.name)
        return role

    def _decrypt(self, key: str) -> str | None:
        try:
            token = base64.urlsafe_b64decode(key.encode("ascii"))
            return self._aead().decrypt(token, None).decode("utf-8")
        except (InvalidTag, ValueError):
            # ValueError covers bad base64/ascii/utf-8 and tokens too short for AES-SIV.
            return None


# --- Module Notes -----------------------------------------------------------
# Hashed keys are HMAC-SHA256 hex digests of the plain key; resolution cost is bounded by
# the number of registered roles, not by the amount of stored data.
