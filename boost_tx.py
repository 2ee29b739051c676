"""
boost_tx.py

Build the undelegate-boost transaction that the pool co-signs.

This is the local half of a two-phase hand-off:
  1) here: the staker authorizes the unstake by partially signing a
     transaction whose fee payer is the pool's fee-payer account
  2) pool: co-signs as fee payer and broadcasts

Nothing in this module talks to the network.
"""

import base64
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Union

from borsh_construct import CStruct, U64
from solders.instruction import AccountMeta, Instruction
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.transaction import Transaction

from pool_api import U64_MAX, PoolState

# ORE boost tokens use 11 decimals (1 token = 100_000_000_000 base units).
TOKEN_DECIMALS = 11

DELEGATION_PROGRAM_ID = Pubkey.from_string("J6XT3gy9hUGhjVBk6cW6MyrZUmgnKzn3z7aQPdNHUpR")
TOKEN_PROGRAM_ID = Pubkey.from_string("TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA")
ASSOCIATED_TOKEN_PROGRAM_ID = Pubkey.from_string("ATokenGPvbdGVxr1b2hvZbsiqW5xWH25efTNsLJA8knL")

DELEGATED_BOOST_SEED = b"delegated-boost"
UNDELEGATE_BOOST_DISCRIMINATOR = 5

UndelegateBoostLayout = CStruct("amount" / U64)


class InvalidMintError(ValueError):
    """Mint text is not a valid base58 public key."""


class InvalidAmountError(ValueError):
    """Amount cannot be expressed as a u64 number of base units."""


# ------------------------------
# Amounts
# ------------------------------

def boost_to_base_units(amount: Union[float, str, Decimal], decimals: int = TOKEN_DECIMALS) -> int:
    """
    Convert a human-readable boost amount into integer base units.

    The amount is scaled by 10**decimals and truncated, so the result is
    floor(amount * 10**decimals) for non-negative input. Floats go through
    their shortest decimal repr, e.g. 1.5 with 9 decimals -> 1_500_000_000.
    Results above u64 max are rejected.
    """
    try:
        dec = Decimal(str(amount))
    except InvalidOperation as exc:
        raise InvalidAmountError(f"{amount!r} is not a number.") from exc

    if not dec.is_finite():
        raise InvalidAmountError(f"Amount must be finite, got {amount!r}")
    if dec < 0:
        raise InvalidAmountError("Amount must not be negative.")

    units = int(dec.scaleb(decimals))
    if units > U64_MAX:
        raise InvalidAmountError("Amount exceeds the maximum token amount.")
    return units


def positive_base_units(amount: Union[float, str, Decimal], decimals: int = TOKEN_DECIMALS) -> int:
    """Like boost_to_base_units, but an amount that truncates to 0 is an error."""
    units = boost_to_base_units(amount, decimals)
    if units <= 0:
        raise InvalidAmountError("Amount is smaller than one base unit.")
    return units


# ------------------------------
# Accounts
# ------------------------------

def parse_mint(text: str) -> Pubkey:
    try:
        return Pubkey.from_string(text)
    except ValueError as exc:
        raise InvalidMintError(f"Invalid mint address: {text!r}") from exc


def associated_token_address(owner: Pubkey, mint: Pubkey) -> Pubkey:
    return Pubkey.find_program_address(
        [bytes(owner), bytes(TOKEN_PROGRAM_ID), bytes(mint)],
        ASSOCIATED_TOKEN_PROGRAM_ID,
    )[0]


def delegated_boost_pda(
    staker: Pubkey, mint: Pubkey, pool_authority: Pubkey, program_id: Pubkey = DELEGATION_PROGRAM_ID
) -> Pubkey:
    return Pubkey.find_program_address(
        [DELEGATED_BOOST_SEED, bytes(staker), bytes(mint), bytes(pool_authority)],
        program_id,
    )[0]


# ------------------------------
# Instruction
# ------------------------------

def encode_undelegate_boost(amount: int) -> bytes:
    return bytes([UNDELEGATE_BOOST_DISCRIMINATOR]) + UndelegateBoostLayout.build({"amount": amount})


def decode_undelegate_boost(data: bytes) -> int:
    """Inverse of encode_undelegate_boost; returns the base-unit amount."""
    if not data or data[0] != UNDELEGATE_BOOST_DISCRIMINATOR:
        raise ValueError("Not an undelegate-boost instruction.")
    return UndelegateBoostLayout.parse(data[1:]).amount


def undelegate_boost_ix(
    staker: Pubkey,
    pool_authority: Pubkey,
    mint: Pubkey,
    amount: int,
    program_id: Pubkey = DELEGATION_PROGRAM_ID,
) -> Instruction:
    """
    Instruction moving `amount` base units of boost stake from the pool's
    custody back to the staker's token account.
    """
    accounts = [
        AccountMeta(staker, is_signer=True, is_writable=True),
        AccountMeta(pool_authority, is_signer=False, is_writable=False),
        AccountMeta(
            delegated_boost_pda(staker, mint, pool_authority, program_id),
            is_signer=False,
            is_writable=True,
        ),
        AccountMeta(mint, is_signer=False, is_writable=False),
        AccountMeta(associated_token_address(staker, mint), is_signer=False, is_writable=True),
        AccountMeta(associated_token_address(pool_authority, mint), is_signer=False, is_writable=True),
        AccountMeta(TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
    ]
    return Instruction(program_id, encode_undelegate_boost(amount), accounts)


# ------------------------------
# Transaction (phase 1)
# ------------------------------

@dataclass(frozen=True)
class UnboostIntent:
    """
    A staker-signed request to unstake, ready to hand to the pool.

    The transaction is deliberately incomplete: the fee-payer signature
    slot stays empty until the pool co-signs it.
    """

    transaction: Transaction
    staker: Pubkey
    mint: str
    amount: int
    encoded: str


def build_unboost_intent(
    keypair: Keypair,
    mint: str,
    amount: int,
    state: PoolState,
    program_id: Pubkey = DELEGATION_PROGRAM_ID,
) -> UnboostIntent:
    staker = keypair.pubkey()
    ix = undelegate_boost_ix(staker, state.authority, parse_mint(mint), amount, program_id)

    tx = Transaction.new_with_payer([ix], state.fee_payer)
    tx.partial_sign([keypair], state.blockhash)

    return UnboostIntent(
        transaction=tx,
        staker=staker,
        mint=mint,
        amount=amount,
        encoded=encode_transaction(tx),
    )


def encode_transaction(tx: Transaction) -> str:
    return base64.b64encode(bytes(tx)).decode("ascii")


def decode_transaction(encoded: str) -> Transaction:
    return Transaction.from_bytes(base64.b64decode(encoded))
