"""Envelope encryption for custodial wallet keys.

Secrets are wrapped with a Fernet key supplied through ``KEY_ENCRYPTION_KEY``
and only unwrapped in memory right before signing.
"""

from typing import Optional, Tuple

from cryptography.fernet import Fernet, InvalidToken
from solders.keypair import Keypair

from memeswap.config import settings
from memeswap.core.exceptions import ValidationError


def _fernet(key: Optional[str] = None) -> Fernet:
    return Fernet(key or settings.KEY_ENCRYPTION_KEY)


def encrypt_keypair(keypair: Keypair, key: Optional[str] = None) -> str:
    return _fernet(key).encrypt(bytes(keypair)).decode()


def decrypt_keypair(token: str, key: Optional[str] = None) -> Keypair:
    """Unwrap a stored secret; a secret sealed under another key is a ValidationError."""
    try:
        secret = _fernet(key).decrypt(token.encode())
    except InvalidToken as e:
        raise ValidationError("Wallet key could not be decrypted") from e
    return Keypair.from_bytes(secret)


def generate_wallet_keys(key: Optional[str] = None) -> Tuple[str, str]:
    """Return ``(public_key, encrypted_secret)`` for a fresh keypair."""
    keypair = Keypair()
    return str(keypair.pubkey()), encrypt_keypair(keypair, key)
