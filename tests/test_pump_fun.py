"""
Tests for the pump.fun protocol helpers and the curve state fetcher.
"""

import asyncio
import struct
from unittest.mock import AsyncMock, MagicMock

import pytest
from solders.pubkey import Pubkey

from models import BondingCurveState
from pump_fun import (
    BUY_DISCRIMINATOR,
    CURVE_DISCRIMINATOR,
    PUMP_PROGRAM,
    SELL_DISCRIMINATOR,
    CurveStateError,
    CurveStateFetcher,
    build_snapshot,
    build_token,
    calculate_curve_price,
    calculate_market_cap,
    encode_buy_data,
    encode_create_instruction,
    encode_sell_data,
    find_associated_bonding_curve,
    get_bonding_curve_address,
    parse_bonding_curve_state,
    parse_create_instruction,
)


def curve_bytes(vtok=1_073_000_000_000_000, vsol=30_000_000_000, rtok=793_100_000_000_000,
                rsol=0, supply=1_000_000_000_000_000, complete=False):
    return CURVE_DISCRIMINATOR + struct.pack("<5Q", vtok, vsol, rtok, rsol, supply) + bytes([int(complete)])


@pytest.fixture
def create_fields():
    return {
        "name": "Doge Killer 🚀",
        "symbol": "DKILL",
        "uri": "https://ipfs.io/ipfs/QmTest",
        "mint": str(Pubkey.new_unique()),
        "bondingCurve": str(Pubkey.new_unique()),
        "user": str(Pubkey.new_unique()),
    }


@pytest.fixture
def create_payload(create_fields):
    f = create_fields
    return encode_create_instruction(f["name"], f["symbol"], f["uri"], f["mint"], f["bondingCurve"], f["user"])


class TestCreateInstruction:
    """Decoding of create event payloads."""

    def test_round_trip(self, create_fields, create_payload):
        assert parse_create_instruction(create_payload) == create_fields

    def test_truncated_payload_returns_none(self, create_payload):
        for cut in (0, 7, 8, 11, 20, len(create_payload) - 32, len(create_payload) - 1):
            assert parse_create_instruction(create_payload[:cut]) is None

    def test_length_prefix_past_end_returns_none(self):
        data = bytes(8) + struct.pack("<I", 1000) + b"short"
        assert parse_create_instruction(data) is None

    def test_invalid_utf8_returns_none(self, create_fields):
        data = bytes(8) + struct.pack("<I", 2) + b"\xff\xfe"
        data += struct.pack("<I", 0) + struct.pack("<I", 0) + bytes(96)
        assert parse_create_instruction(data) is None

    def test_header_is_ignored(self, create_fields):
        f = create_fields
        payload = encode_create_instruction(f["name"], f["symbol"], f["uri"], f["mint"],
                                            f["bondingCurve"], f["user"], header=b"\x01" * 8)
        assert parse_create_instruction(payload)["mint"] == f["mint"]

    def test_build_token(self, create_fields):
        token = build_token(create_fields)

        assert token.mint == create_fields["mint"]
        assert token.name == create_fields["name"]
        assert token.bonding_curve == create_fields["bondingCurve"]
        assert token.associated_curve == str(find_associated_bonding_curve(
            Pubkey.from_string(create_fields["mint"]), Pubkey.from_string(create_fields["bondingCurve"])))
        assert token.history == [] and token.analysis == []
        assert (token.migrated, token.trading, token.sold) == (False, False, False)


class TestAddresses:

    def test_associated_curve_is_deterministic(self):
        mint, curve = Pubkey.new_unique(), Pubkey.new_unique()
        assert find_associated_bonding_curve(mint, curve) == find_associated_bonding_curve(mint, curve)
        assert find_associated_bonding_curve(mint, curve) != find_associated_bonding_curve(curve, mint)

    def test_bonding_curve_address_is_off_curve_pda(self):
        mint = Pubkey.new_unique()
        address, bump = get_bonding_curve_address(mint)
        assert address == Pubkey.create_program_address([b"bonding-curve", bytes(mint), bytes([bump])], PUMP_PROGRAM)
        assert not address.is_on_curve()


class TestCurveState:
    """Curve account parsing and price math."""

    def test_parse(self):
        state = parse_bonding_curve_state(curve_bytes(complete=True))

        assert state == BondingCurveState(
            virtual_token_reserves=1_073_000_000_000_000,
            virtual_sol_reserves=30_000_000_000,
            real_token_reserves=793_100_000_000_000,
            real_sol_reserves=0,
            token_total_supply=1_000_000_000_000_000,
            complete=True,
        )

    def test_parse_ignores_trailing_bytes(self):
        assert parse_bonding_curve_state(curve_bytes() + bytes(100)).complete is False

    def test_short_data_raises(self):
        with pytest.raises(CurveStateError):
            parse_bonding_curve_state(curve_bytes()[:40])

    def test_bad_discriminator_raises(self):
        with pytest.raises(CurveStateError):
            parse_bonding_curve_state(bytes(8) + curve_bytes()[8:])

    def test_price_and_market_cap(self, curve_state):
        price = calculate_curve_price(curve_state)

        assert price == pytest.approx(30.0 / 1_073_000_000)
        assert calculate_market_cap(curve_state, price) == pytest.approx(price * 1_000_000_000)

    def test_zero_reserves_price_zero(self):
        assert calculate_curve_price(BondingCurveState()) == 0.0
        assert calculate_curve_price(BondingCurveState(virtual_token_reserves=5)) == 0.0

    def test_build_snapshot(self, curve_state):
        snap = build_snapshot(curve_state, timestamp=123.0)
        assert snap.timestamp == 123.0
        assert snap.market_cap == pytest.approx(calculate_market_cap(curve_state, snap.token_price))


class TestTradeInstructionData:

    def test_buy_data(self):
        data = encode_buy_data(1_000_000, 5_200_000)
        assert data[:8] == BUY_DISCRIMINATOR
        assert struct.unpack("<QQ", data[8:]) == (1_000_000, 5_200_000)

    def test_sell_data(self):
        data = encode_sell_data(2_000_000, 10)
        assert data[:8] == SELL_DISCRIMINATOR
        assert len(data) == 24


class TestCurveStateFetcher:
    """RPC fetch with all failures surfaced as CurveStateError."""

    def _fetcher(self, client, timeout=1.0):
        return CurveStateFetcher("http://localhost:8899", timeout=timeout, client=client)

    @pytest.mark.asyncio
    async def test_fetch(self):
        client = MagicMock()
        client.get_account_info = AsyncMock(return_value=MagicMock(value=MagicMock(data=curve_bytes())))

        state = await self._fetcher(client).fetch(str(Pubkey.new_unique()))

        assert state.virtual_sol_reserves == 30_000_000_000

    @pytest.mark.asyncio
    async def test_fetch_snapshot(self):
        client = MagicMock()
        client.get_account_info = AsyncMock(return_value=MagicMock(value=MagicMock(data=curve_bytes())))

        snap = await self._fetcher(client).fetch_snapshot(str(Pubkey.new_unique()))

        assert snap.token_price > 0
        assert snap.market_cap > 0

    @pytest.mark.asyncio
    async def test_missing_account_raises(self):
        client = MagicMock()
        client.get_account_info = AsyncMock(return_value=MagicMock(value=None))

        with pytest.raises(CurveStateError):
            await self._fetcher(client).fetch(str(Pubkey.new_unique()))

    @pytest.mark.asyncio
    async def test_rpc_error_raises(self):
        client = MagicMock()
        client.get_account_info = AsyncMock(side_effect=RuntimeError("node down"))

        with pytest.raises(CurveStateError, match="node down"):
            await self._fetcher(client).fetch(str(Pubkey.new_unique()))

    @pytest.mark.asyncio
    async def test_timeout_raises(self):
        async def hang(*_args, **_kwargs):
            await asyncio.sleep(10)

        client = MagicMock()
        client.get_account_info = hang

        with pytest.raises(CurveStateError, match="timed out"):
            await self._fetcher(client, timeout=0.01).fetch(str(Pubkey.new_unique()))
