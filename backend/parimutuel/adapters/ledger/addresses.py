"""Program-derived and associated token addresses for the pools program."""

from __future__ import annotations

from solders.pubkey import Pubkey

from parimutuel.core.config import ASSOCIATED_TOKEN_PROGRAM_ID, TOKEN_PROGRAM_ID

POOL_SEED = b"pool"
VAULT_SEED = b"vault"
BET_SEED = b"bet"


def parse_pubkey(value: str) -> Pubkey:
    """Parse a base58 address. Raises ValueError on anything that is not a 32-byte key."""
    candidate = (value or "").strip()
    if not 32 <= len(candidate) <= 44:
        raise ValueError("address must be 32-44 base58 characters")
    try:
        return Pubkey.from_string(candidate)
    except ValueError as exc:
        raise ValueError(f"invalid base58 address: {candidate}") from exc


def is_valid_pubkey(value: str) -> bool:
    try:
        parse_pubkey(value)
    except ValueError:
        return False
    return True


def seed_bytes(pool_seed: str) -> bytes:
    raw = bytes.fromhex(pool_seed)
    if len(raw) != 32:
        raise ValueError("pool seed must be 32 bytes")
    return raw


def pool_pda(pool_seed: str, program_id: str) -> Pubkey:
    address, _bump = Pubkey.find_program_address([POOL_SEED, seed_bytes(pool_seed)], Pubkey.from_string(program_id))
    return address


def vault_pda(pool_seed: str, program_id: str) -> Pubkey:
    address, _bump = Pubkey.find_program_address([VAULT_SEED, seed_bytes(pool_seed)], Pubkey.from_string(program_id))
    return address


def user_bet_pda(pool: Pubkey, user: Pubkey, program_id: str) -> Pubkey:
    address, _bump = Pubkey.find_program_address([BET_SEED, bytes(pool), bytes(user)], Pubkey.from_string(program_id))
    return address


def associated_token_address(owner: Pubkey, mint: str) -> Pubkey:
    address, _bump = Pubkey.find_program_address(
        [bytes(owner), bytes(Pubkey.from_string(TOKEN_PROGRAM_ID)), bytes(Pubkey.from_string(mint))],
        Pubkey.from_string(ASSOCIATED_TOKEN_PROGRAM_ID),
    )
    return address
