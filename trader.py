# Filename: trader.py

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Commitment
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from models import MemeToken, OrderType
from pump_fun import (
    LAMPORTS_PER_SOL,
    TOKEN_DECIMALS,
    CurveStateError,
    calculate_curve_price,
    encode_buy_data,
    encode_sell_data,
    find_associated_address,
)

logger = logging.getLogger("Trader")


class OrderExecutionError(Exception):
    """An executor could not fill an order."""


class Executor:
    """
    What the OrderHandler needs from an execution backend. Both methods
    raise OrderExecutionError on failure and return normally on success.
    """

    async def execute_buy_order(self, token: MemeToken) -> None:
        raise NotImplementedError

    async def execute_sell_order(self, token: MemeToken) -> None:
        raise NotImplementedError


@dataclass(frozen=True)
class OrderQuote:
    """Everything needed to build a pump.fun buy or sell instruction."""
    order_type: OrderType
    mint: str
    bonding_curve: str
    associated_curve: str
    token_account: str
    token_amount: int
    sol_lamports: int
    price: float
    priority_fee: int
    data: bytes

    def to_dict(self) -> Dict[str, Any]:
        return {
            "order_type": self.order_type.value,
            "mint": self.mint,
            "token_amount": self.token_amount,
            "sol_lamports": self.sol_lamports,
            "price": self.price,
            "priority_fee": self.priority_fee,
        }


TransactionSender = Callable[[OrderQuote, Keypair], Awaitable[str]]


class PumpFunTrader(Executor):
    """
    Live executor. Prices each order off a fresh read of the bonding curve
    and hands the resulting quote to `transaction_sender`, which builds,
    signs and submits the transaction. Without a sender orders fail with
    OrderExecutionError, unless `dry_run` (DRY_RUN) is set, in which case
    they are only logged.
    """

    def __init__(self, config: Dict[str, Any], fetcher, client: Optional[AsyncClient] = None,
                 transaction_sender: Optional[TransactionSender] = None, dry_run: Optional[bool] = None):
        self.config = config
        self.fetcher = fetcher
        self.client = client or AsyncClient(
            config.get("RPC_HTTP_ENDPOINT", "https://api.mainnet-beta.solana.com"),
            commitment=Commitment(config.get("COMMITMENT", "confirmed")),
        )
        self.transaction_sender = transaction_sender
        self.dry_run = config.get("DRY_RUN", False) if dry_run is None else dry_run
        self.amount_sol = config.get("POSITION_AMOUNT_SOL", 0.004)
        self.slippage = config.get("SLIPPAGE", 0.3)
        self.priority_fee = config.get("PRIORITY_FEE_LAMPORTS", 50000)
        self.timeout = config.get("FETCH_TIMEOUT_SECONDS", 10.0)
        self.keypair = self._load_keypair(config.get("WALLET_PRIVATE_KEY", ""))

        if self.transaction_sender is None:
            if self.dry_run:
                logger.warning("[TRADER] DRY RUN: orders are quoted and logged, nothing is sent")
            else:
                logger.error("[TRADER] Transaction sender not configured, live orders will fail")

    @staticmethod
    def _load_keypair(private_key: str) -> Optional[Keypair]:
        if not private_key:
            logger.error("[TRADER] Wallet private key not configured")
            return None
        try:
            return Keypair.from_base58_string(private_key)
        except ValueError as e:
            logger.error(f"[TRADER] Invalid wallet private key: {e}")
            return None

    def _require_wallet(self) -> Keypair:
        if self.keypair is None:
            raise OrderExecutionError("wallet private key not configured")
        return self.keypair

    async def _current_price(self, token: MemeToken) -> float:
        try:
            state = await self.fetcher.fetch(token.bonding_curve)
        except CurveStateError as e:
            raise OrderExecutionError(f"failed to fetch bonding curve state: {e}") from e
        price = calculate_curve_price(state)
        if price <= 0:
            raise OrderExecutionError(f"invalid reserve state for {token.mint}: reserves must be greater than zero")
        return price

    def _token_account(self, wallet: Keypair, token: MemeToken) -> Pubkey:
        return find_associated_address(wallet.pubkey(), Pubkey.from_string(token.mint))

    async def get_token_balance(self, token_account: Pubkey) -> int:
        """Raw token balance (base units) of a token account."""
        try:
            resp = await asyncio.wait_for(self.client.get_token_account_balance(token_account),
                                          timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise OrderExecutionError(f"timed out reading balance of {token_account}") from e
        except Exception as e:
            raise OrderExecutionError(f"failed to read balance of {token_account}: {e}") from e
        return int(resp.value.amount)

    async def quote_buy(self, token: MemeToken) -> OrderQuote:
        wallet = self._require_wallet()
        price = await self._current_price(token)
        token_amount = int(self.amount_sol / price * 10 ** TOKEN_DECIMALS)
        max_sol_cost = int(self.amount_sol * LAMPORTS_PER_SOL * (1 + self.slippage))
        return OrderQuote(
            order_type=OrderType.BUY,
            mint=token.mint,
            bonding_curve=token.bonding_curve,
            associated_curve=token.associated_curve,
            token_account=str(self._token_account(wallet, token)),
            token_amount=token_amount,
            sol_lamports=max_sol_cost,
            price=price,
            priority_fee=self.priority_fee,
            data=encode_buy_data(token_amount, max_sol_cost),
        )

    async def quote_sell(self, token: MemeToken) -> OrderQuote:
        wallet = self._require_wallet()
        token_account = self._token_account(wallet, token)
        balance = await self.get_token_balance(token_account)
        if balance <= 0:
            raise OrderExecutionError(f"no {token.symbol} balance to sell in {token_account}")
        price = await self._current_price(token)
        min_sol_output = int(balance / 10 ** TOKEN_DECIMALS * price * (1 - self.slippage) * LAMPORTS_PER_SOL)
        return OrderQuote(
            order_type=OrderType.SELL,
            mint=token.mint,
            bonding_curve=token.bonding_curve,
            associated_curve=token.associated_curve,
            token_account=str(token_account),
            token_amount=balance,
            sol_lamports=min_sol_output,
            price=price,
            priority_fee=self.priority_fee,
            data=encode_sell_data(balance, min_sol_output),
        )

    async def _send(self, quote: OrderQuote) -> Optional[str]:
        if self.transaction_sender is None:
            if not self.dry_run:
                raise OrderExecutionError("transaction sender not configured")
            logger.info(f"[TRADER] Dry run {quote.order_type.value}: {quote.to_dict()}")
            return None
        try:
            signature = await self.transaction_sender(quote, self._require_wallet())
        except OrderExecutionError:
            raise
        except Exception as e:
            raise OrderExecutionError(f"{quote.order_type.value} transaction failed: {e}") from e
        logger.info(f"[TRADER] {quote.order_type.value} transaction sent for {quote.mint}: {signature}")
        return signature

    async def execute_buy_order(self, token: MemeToken) -> None:
        logger.info(f"[TRADER] Buying {token.symbol} ({token.mint}) for {self.amount_sol} SOL")
        await self._send(await self.quote_buy(token))

    async def execute_sell_order(self, token: MemeToken) -> None:
        logger.info(f"[TRADER] Selling {token.symbol} ({token.mint})")
        await self._send(await self.quote_sell(token))

    async def close(self):
        await self.client.close()
