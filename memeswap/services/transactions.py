import base64
import binascii
from typing import Optional, Tuple

from solders.hash import Hash
from solders.keypair import Keypair
from solders.message import MessageV0
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.system_program import TransferParams, transfer
from solders.transaction import VersionedTransaction

from memeswap.config import settings
from memeswap.core.exceptions import ValidationError
from memeswap.models.coin import SOL_MINT

TOKEN_PROGRAM_ID = Pubkey.from_string("TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA")
ASSOCIATED_TOKEN_PROGRAM_ID = Pubkey.from_string("ATokenGPvbdGVxr1b2hvZbsiqW5xWH25efTNsLJA8knL")


def is_valid_address(address: str) -> bool:
    try:
        Pubkey.from_string(address)
    except ValueError:
        return False
    return True


def build_sol_transfer(from_address: str, to_address: str, lamports: int, blockhash: str) -> str:
    """Build an unsigned native SOL transfer and return it base64 encoded."""
    if not is_valid_address(to_address):
        raise ValidationError(f"Invalid destination address: {to_address}")
    payer = Pubkey.from_string(from_address)
    ix = transfer(TransferParams(from_pubkey=payer, to_pubkey=Pubkey.from_string(to_address), lamports=lamports))
    message = MessageV0.try_compile(payer, [ix], [], Hash.from_string(blockhash))
    unsigned = VersionedTransaction.populate(message, [Signature.default()])
    return base64.b64encode(bytes(unsigned)).decode()


def sign_transaction(unsigned_b64: str, keypair: Keypair) -> Tuple[str, bytes]:
    """Sign a base64 unsigned versioned transaction.

    Returns the base58 signature, which is also the transaction hash, and the
    wire bytes to submit.
    """
    try:
        unsigned = VersionedTransaction.from_bytes(base64.b64decode(unsigned_b64))
    except (binascii.Error, ValueError) as e:
        raise ValidationError(f"Malformed unsigned transaction: {e}") from e
    if unsigned.message.account_keys[0] != keypair.pubkey():
        raise ValidationError("Transaction fee payer does not match the wallet")
    signed = VersionedTransaction(unsigned.message, [keypair])
    return str(signed.signatures[0]), bytes(signed)


def associated_token_address(owner: str, mint: str) -> str:
    seeds = [bytes(Pubkey.from_string(owner)), bytes(TOKEN_PROGRAM_ID), bytes(Pubkey.from_string(mint))]
    address, _ = Pubkey.find_program_address(seeds, ASSOCIATED_TOKEN_PROGRAM_ID)
    return str(address)


def fee_mint(input_mint: str, output_mint: str) -> str:
    """Mint the platform fee is taken in for an ExactIn route: wrapped SOL when either leg is SOL."""
    if SOL_MINT in (input_mint, output_mint):
        return SOL_MINT
    return input_mint


def platform_fee_account(input_mint: str, output_mint: str) -> Optional[str]:
    """Token account receiving the platform fee, or ``None`` when fees are not collected."""
    if not settings.platform_fee_bps:
        return None
    return associated_token_address(settings.PLATFORM_FEE_ACCOUNT, fee_mint(input_mint, output_mint))
