import base64
import copy
import hashlib
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from functools import lru_cache
from typing import Any, Optional, Protocol, Sequence, Type

from cryptography.fernet import Fernet, InvalidToken, MultiFernet
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from medconnect.core.config import settings
from medconnect.core.exceptions import (
    ConfigurationError,
    CorruptTokenError,
    ExpiredError,
    NotFoundError,
)

logger = logging.getLogger(__name__)

# 32 hex characters = 128 bits of the SHA-256 digest
TOKEN_HASH_LENGTH = 32


class StoredToken(Protocol):
    token_hash: str
    encrypted_payload: str
    expires_at: datetime


class TokenStore(Protocol):
    def get_by_hash(self, token_hash: str) -> Optional[StoredToken]:
        ...


@dataclass(frozen=True)
class MintedToken:
    token_hash: str
    encrypted_payload: str
    expires_at: datetime


@dataclass(frozen=True)
class DecodeResult:
    token: Any
    snapshot: BaseModel


@lru_cache(maxsize=32)
def derive_fernet_key(secret: str, salt: str, iterations: int) -> bytes:
    """Stretch a configured secret into a Fernet key"""
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=salt.encode(),
        iterations=iterations,
    )
    return base64.urlsafe_b64encode(kdf.derive(secret.encode()))


class TokenCodec:
    """Mints and opens the encrypted credential carried by a prescription QR code.

    Payloads are sealed with Fernet (AES-CBC with a random IV stored inside
    the token, authenticated with HMAC-SHA256). The first secret encrypts;
    every secret is tried on decryption so keys can be rotated without
    invalidating tokens already handed to patients.

    The codec knows nothing about prescription status: it answers "is this
    credential genuine and unexpired", callers decide what a scan means.
    """

    def __init__(
        self,
        secrets_: Sequence[str],
        snapshot_model: Type[BaseModel],
        store: Optional[TokenStore] = None,
        salt: str = None,
        iterations: int = None,
    ):
        if not secrets_ or not all(secrets_):
            raise ConfigurationError("At least one QR encryption key is required")

        salt = salt or settings.QR_ENCRYPTION_SALT
        iterations = iterations or settings.QR_KDF_ITERATIONS
        self._cipher = MultiFernet([
            Fernet(derive_fernet_key(secret, salt, iterations)) for secret in secrets_
        ])
        self.snapshot_model = snapshot_model
        self.store = store

    def with_store(self, store: TokenStore) -> "TokenCodec":
        """Same keys, different lookup backend (e.g. a request-scoped repository)"""
        codec = copy.copy(self)
        codec.store = store
        return codec

    def mint(self, snapshot: BaseModel, ttl: timedelta, now: Optional[datetime] = None) -> MintedToken:
        """Seal a snapshot; pure function of its inputs plus randomness"""
        now = now or datetime.utcnow()
        token_hash = self.generate_token_hash(getattr(snapshot, "prescription_id", ""), now)
        encrypted_payload = self.encrypt(snapshot.model_dump_json())
        return MintedToken(
            token_hash=token_hash,
            encrypted_payload=encrypted_payload,
            expires_at=now + ttl,
        )

    def verify(self, token_hash: str, now: Optional[datetime] = None) -> DecodeResult:
        """Look up a token by hash and open it.

        Raises NotFoundError, ExpiredError (checked before any decryption) or
        CorruptTokenError. Counters are left untouched.
        """
        if self.store is None:
            raise ConfigurationError("TokenCodec.verify needs a token store")

        now = now or datetime.utcnow()
        token = self.store.get_by_hash(token_hash)
        if token is None:
            raise NotFoundError("QR code not found", details={"token_hash": token_hash})

        if now >= token.expires_at:
            raise ExpiredError(details={"token_hash": token_hash, "expires_at": token.expires_at.isoformat()})

        return DecodeResult(token=token, snapshot=self.decode(token.encrypted_payload))

    def decode(self, encrypted_payload: str) -> BaseModel:
        plaintext = self.decrypt(encrypted_payload)
        try:
            return self.snapshot_model.model_validate_json(plaintext)
        except PydanticValidationError as exc:
            raise CorruptTokenError(details={"reason": "payload does not match snapshot schema"}) from exc

    def encrypt(self, data: str) -> str:
        return self._cipher.encrypt(data.encode("utf-8")).decode("ascii")

    def decrypt(self, encrypted_payload: str) -> str:
        try:
            return self._cipher.decrypt(encrypted_payload.encode("ascii")).decode("utf-8")
        except (InvalidToken, UnicodeError, ValueError, TypeError, AttributeError) as exc:
            logger.warning("QR payload failed to decrypt")
            raise CorruptTokenError(details={"reason": "payload could not be decrypted"}) from exc

    @staticmethod
    def generate_token_hash(prescription_id: str, now: datetime) -> str:
        """Public lookup key: SHA-256 over id, time and 16 random bytes"""
        data = f"{prescription_id}-{now.timestamp()}-{secrets.token_hex(16)}"
        return hashlib.sha256(data.encode()).hexdigest()[:TOKEN_HASH_LENGTH]


def build_token_codec(store: Optional[TokenStore] = None) -> TokenCodec:
    """Codec configured from settings"""
    from medconnect.domain.prescriptions.schemas import PrescriptionSnapshot

    return TokenCodec(
        [settings.QR_ENCRYPTION_KEY, *settings.qr_previous_keys],
        snapshot_model=PrescriptionSnapshot,
        store=store,
    )
