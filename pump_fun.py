"""
pump.fun protocol helpers: create-event decoding, bonding curve account
parsing, address derivation and the RPC-backed curve state fetcher.
"""

import asyncio
import struct
import time
from typing import Dict, Optional, Tuple

from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Commitment
from solders.pubkey import Pubkey

from models import BondingCurveState, MemeToken, TokenSnapshot

PUMP_PROGRAM = Pubkey.from_string("6EF8rrecthR5Dkzon8Nwu78hRvfCKubJ14M5uBEwF6P")
PUMP_GLOBAL = Pubkey.from_string("4wTV1YmiEkRvAtNtsSGPtUrqRYQMe5SKy2uB4Jjaxnjf")
PUMP_FEE = Pubkey.from_string("CebN5WGQ4jvEPvsVU4EoHEpgzq1VV7AbicfhtW4xC9iM")
PUMP_EVENT_AUTHORITY = Pubkey.from_string("Ce6TQqeHC9p8KetsN6JsjHK7UTZk7nasjjnr7XxXp9F1")
SYSTEM_PROGRAM = Pubkey.from_string("11111111111111111111111111111111")
TOKEN_PROGRAM = Pubkey.from_string("TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA")
ASSOCIATED_TOKEN_PROGRAM = Pubkey.from_string("ATokenGPvbdGVxr1b2hvZbsiqW5xWH25efTNsLJA8knL")
SYSTEM_RENT = Pubkey.from_string("SysvarRent111111111111111111111111111111111")

LAMPORTS_PER_SOL = 1_000_000_000
TOKEN_DECIMALS = 6

CURVE_DISCRIMINATOR = struct.pack("<Q", 6966180631402821399)
BUY_DISCRIMINATOR = struct.pack("<Q", 16927863322537952870)
SELL_DISCRIMINATOR = struct.pack("<Q", 12502976635542562355)
CREATE_EVENT_DISCRIMINATOR = bytes([27, 114, 169, 77, 222, 235, 99, 118])

# discriminator + 5 x u64 + bool
CURVE_STATE_SIZE = 8 + 5 * 8 + 1
PUBKEY_SIZE = 32

_STRING_FIELDS = ("name", "symbol", "uri")
_PUBKEY_FIELDS = ("mint", "bondingCurve", "user")


class CurveStateError(Exception):
    """The bonding curve account could not be fetched or decoded."""


# ---------------------
# Create instruction
# ---------------------

def parse_create_instruction(data: bytes) -> Optional[Dict[str, str]]:
    """
    Decodes a create event payload: an 8 byte header, then name, symbol and
    uri as u32-length-prefixed UTF-8, then mint, bonding curve and user as
    32 byte keys. Returns None if the payload is truncated or malformed.
    """
    if len(data) < 8:
        return None
    offset = 8
    parsed: Dict[str, str] = {}

    for name in _STRING_FIELDS:
        if offset + 4 > len(data):
            return None
        (length,) = struct.unpack_from("<I", data, offset)
        offset += 4
        if offset + length > len(data):
            return None
        try:
            parsed[name] = data[offset:offset + length].decode("utf-8")
        except UnicodeDecodeError:
            return None
        offset += length

    for name in _PUBKEY_FIELDS:
        if offset + PUBKEY_SIZE > len(data):
            return None
        parsed[name] = str(Pubkey.from_bytes(data[offset:offset + PUBKEY_SIZE]))
        offset += PUBKEY_SIZE

    return parsed


def encode_create_instruction(name: str, symbol: str, uri: str, mint: str, bonding_curve: str,
                              user: str, header: bytes = CREATE_EVENT_DISCRIMINATOR) -> bytes:
    """Inverse of parse_create_instruction."""
    if len(header) != 8:
        raise ValueError("header must be 8 bytes")
    out = bytearray(header)
    for value in (name, symbol, uri):
        raw = value.encode("utf-8")
        out += struct.pack("<I", len(raw)) + raw
    for key in (mint, bonding_curve, user):
        out += bytes(Pubkey.from_string(key))
    return bytes(out)


def build_token(parsed: Dict[str, str]) -> MemeToken:
    """Creates a fresh MemeToken from a decoded create event."""
    mint = Pubkey.from_string(parsed["mint"])
    curve = Pubkey.from_string(parsed["bondingCurve"])
    return MemeToken(
        mint=str(mint),
        name=parsed["name"],
        symbol=parsed["symbol"],
        uri=parsed["uri"],
        bonding_curve=str(curve),
        associated_curve=str(find_associated_bonding_curve(mint, curve)),
        user=parsed.get("user", ""),
    )


# ---------------------
# Address derivation
# ---------------------

def find_associated_address(owner: Pubkey, mint: Pubkey) -> Pubkey:
    """Associated token account of `owner` for `mint`."""
    address, _ = Pubkey.find_program_address(
        [bytes(owner), bytes(TOKEN_PROGRAM), bytes(mint)],
        ASSOCIATED_TOKEN_PROGRAM,
    )
    return address


def find_associated_bonding_curve(mint: Pubkey, bonding_curve: Pubkey) -> Pubkey:
    return find_associated_address(bonding_curve, mint)


def get_bonding_curve_address(mint: Pubkey, program_id: Pubkey = PUMP_PROGRAM) -> Tuple[Pubkey, int]:
    return Pubkey.find_program_address([b"bonding-curve", bytes(mint)], program_id)


# ---------------------
# Trade instruction data
# ---------------------

def encode_buy_data(token_amount: int, max_sol_cost: int) -> bytes:
    """Buy args: token amount in base units, then the lamport ceiling."""
    return BUY_DISCRIMINATOR + struct.pack("<QQ", token_amount, max_sol_cost)


def encode_sell_data(token_amount: int, min_sol_output: int) -> bytes:
    return SELL_DISCRIMINATOR + struct.pack("<QQ", token_amount, min_sol_output)


# ---------------------
# Bonding curve state
# ---------------------

def parse_bonding_curve_state(data: bytes) -> BondingCurveState:
    if len(data) < CURVE_STATE_SIZE:
        raise CurveStateError(f"invalid curve state: expected {CURVE_STATE_SIZE} bytes, got {len(data)}")
    if data[:8] != CURVE_DISCRIMINATOR:
        raise CurveStateError("invalid curve state discriminator")

    virtual_token, virtual_sol, real_token, real_sol, supply = struct.unpack_from("<5Q", data, 8)
    return BondingCurveState(
        virtual_token_reserves=virtual_token,
        virtual_sol_reserves=virtual_sol,
        real_token_reserves=real_token,
        real_sol_reserves=real_sol,
        token_total_supply=supply,
        complete=data[48] != 0,
    )


def calculate_curve_price(state: BondingCurveState) -> float:
    """Token price in SOL. Empty reserves price at 0."""
    if state.virtual_token_reserves <= 0 or state.virtual_sol_reserves <= 0:
        return 0.0
    return ((state.virtual_sol_reserves / LAMPORTS_PER_SOL) /
            (state.virtual_token_reserves / 10 ** TOKEN_DECIMALS))


def calculate_market_cap(state: BondingCurveState, token_price: float) -> float:
    """Market cap in SOL: price times whole-token supply."""
    return token_price * float(state.token_total_supply // 10 ** TOKEN_DECIMALS)


def build_snapshot(state: BondingCurveState, timestamp: Optional[float] = None) -> TokenSnapshot:
    price = calculate_curve_price(state)
    return TokenSnapshot(
        bonding_state=state,
        token_price=price,
        market_cap=calculate_market_cap(state, price),
        timestamp=time.time() if timestamp is None else timestamp,
    )


class CurveStateFetcher:
    """Reads bonding curve accounts over RPC."""

    def __init__(self, rpc_url: str, commitment: str = "confirmed", timeout: float = 10.0,
                 client: Optional[AsyncClient] = None):
        self.client = client or AsyncClient(rpc_url, commitment=Commitment(commitment))
        self.timeout = timeout

    async def fetch(self, curve_address: str) -> BondingCurveState:
        try:
            resp = await asyncio.wait_for(
                self.client.get_account_info(Pubkey.from_string(curve_address)),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            raise CurveStateError(f"timed out fetching {curve_address}") from e
        except Exception as e:
            raise CurveStateError(f"failed to fetch account info for {curve_address}: {e}") from e

        account = resp.value
        if account is None or not account.data:
            raise CurveStateError(f"invalid curve state for {curve_address}: no data")
        return parse_bonding_curve_state(bytes(account.data))

    async def fetch_snapshot(self, curve_address: str) -> TokenSnapshot:
        return build_snapshot(await self.fetch(curve_address))

    async def close(self):
        await self.client.close()
