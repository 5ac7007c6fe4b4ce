import base64
import pytest
from cryptography.fernet import Fernet
from unittest.mock import patch
from solders.keypair import Keypair
from solders.transaction import VersionedTransaction
from memeswap.core.exceptions import ValidationError
from memeswap.services.keystore import decrypt_keypair, encrypt_keypair, generate_wallet_keys
from memeswap.config import settings
from memeswap.models.coin import SOL_MINT
from memeswap.services.transactions import (
    associated_token_address, build_sol_transfer, fee_mint, is_valid_address, platform_fee_account, sign_transaction,
)
from tests.conftest import BONK, WIF

BLOCKHASH = "11111111111111111111111111111111"


def test_generated_wallet_round_trips_through_encryption():
    public_key, encrypted = generate_wallet_keys()
    assert public_key not in encrypted
    assert str(decrypt_keypair(encrypted).pubkey()) == public_key


def test_wrong_key_cannot_decrypt():
    token = encrypt_keypair(Keypair())
    with pytest.raises(ValidationError):
        decrypt_keypair(token, key=Fernet.generate_key().decode())


def test_address_validation():
    assert is_valid_address(str(Keypair().pubkey()))
    assert not is_valid_address("not-a-key")
    assert not is_valid_address("")


def test_signature_is_the_transaction_hash():
    keypair = Keypair()
    unsigned = build_sol_transfer(str(keypair.pubkey()), str(Keypair().pubkey()), 5000, BLOCKHASH)
    signature, raw = sign_transaction(unsigned, keypair)

    tx = VersionedTransaction.from_bytes(raw)
    assert str(tx.signatures[0]) == signature
    assert tx.message.account_keys[0] == keypair.pubkey()


def test_refuses_transaction_paid_by_someone_else():
    payer = Keypair()
    unsigned = build_sol_transfer(str(payer.pubkey()), str(Keypair().pubkey()), 5000, BLOCKHASH)
    with pytest.raises(ValidationError):
        sign_transaction(unsigned, Keypair())


def test_refuses_garbage():
    with pytest.raises(ValidationError):
        sign_transaction(base64.b64encode(b"garbage").decode(), Keypair())
    with pytest.raises(ValidationError):
        build_sol_transfer(str(Keypair().pubkey()), "bad-address", 1, BLOCKHASH)


def test_fee_mint_prefers_wrapped_sol():
    assert fee_mint(SOL_MINT, BONK) == SOL_MINT
    assert fee_mint(BONK, SOL_MINT) == SOL_MINT
    assert fee_mint(BONK, WIF) == BONK


def test_platform_fee_account_is_the_owner_token_account():
    owner = str(Keypair().pubkey())
    with patch.object(settings, "PLATFORM_FEE_ACCOUNT", owner):
        account = platform_fee_account(BONK, WIF)
    assert account == associated_token_address(owner, BONK)
    assert account != associated_token_address(owner, WIF)
    assert is_valid_address(account)

    with patch.object(settings, "PLATFORM_FEE_ACCOUNT", ""):
        assert platform_fee_account(BONK, WIF) is None
