"""Program ids and mint addresses used across venues."""

from __future__ import annotations

from solders.pubkey import Pubkey
from solders.system_program import ID as SYSTEM_PROGRAM_ID
from solders.sysvar import RENT as SYSVAR_RENT_PUBKEY
from spl.token.constants import (
    ASSOCIATED_TOKEN_PROGRAM_ID,
    TOKEN_PROGRAM_ID,
    WRAPPED_SOL_MINT,
)

PUMPFUN_PROGRAM_ID = Pubkey.from_string("6EF8rrecthR5Dkzon8Nwu78hRvfCKubJ14M5uBEwF6P")
PUMPFUN_FEE_PROGRAM_ID = Pubkey.from_string("pfeeUxB6jkeY1Hxd7CsFCAjcbHA9rWtchMGdZ6VojVZ")
PUMPSWAP_PROGRAM_ID = Pubkey.from_string("pAMMBay6oceH9fJKBRHGP5D4bD4sWpmSwMn52FMfXEA")
RAYDIUM_V4_PROGRAM_ID = Pubkey.from_string("675kPX9MHTjS2zt1qfr1NYHuzeLXfQM9H24wFSUt1Mp8")
TOKEN_2022_PROGRAM_ID = Pubkey.from_string("TokenzQdBNbLqP5VEhdkAS6EPFLC1PHnBqCXEpPxuEb")

WSOL_MINT = WRAPPED_SOL_MINT
USDC_MINT = Pubkey.from_string("EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v")

LAMPORTS_PER_SOL = 1_000_000_000
WSOL_DECIMALS = 9
USDC_DECIMALS = 6

BPS_DENOMINATOR = 10_000

__all__ = [
    "ASSOCIATED_TOKEN_PROGRAM_ID",
    "BPS_DENOMINATOR",
    "LAMPORTS_PER_SOL",
    "PUMPFUN_FEE_PROGRAM_ID",
    "PUMPFUN_PROGRAM_ID",
    "PUMPSWAP_PROGRAM_ID",
    "RAYDIUM_V4_PROGRAM_ID",
    "SYSTEM_PROGRAM_ID",
    "SYSVAR_RENT_PUBKEY",
    "TOKEN_2022_PROGRAM_ID",
    "TOKEN_PROGRAM_ID",
    "USDC_DECIMALS",
    "USDC_MINT",
    "WSOL_DECIMALS",
    "WSOL_MINT",
]
