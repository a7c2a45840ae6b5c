from __future__ import annotations

from decimal import Decimal
from typing import Any

from .control import Reporter
from .market import BlockingCaller
from .models import BalanceError, BalanceSettings, ChainSettings


class BalanceManager:
    """Moves value between the native asset and its wrapped payment token.

    Bids are paid in the wrapped token, purchases in the native asset. Each
    method tops up only the shortfall plus a small buffer and never retries.
    """

    def __init__(
        self,
        *,
        market: Any,
        settings: BalanceSettings,
        chain: ChainSettings,
        call: BlockingCaller,
        reporter: Reporter,
        dry_run: bool = True,
    ) -> None:
        self.market = market
        self.settings = settings
        self.chain = chain
        self._call = call
        self.reporter = reporter
        self.dry_run = dry_run

    async def ensure_sufficient_payment_asset(self, required: Decimal, account: str) -> None:
        balance = await self._call(self.market.get_payment_asset_balance, account)
        if balance >= required:
            return
        amount = required - balance + self.settings.wrap_buffer
        if self.dry_run:
            self.reporter.info(f"DRY WRAP {amount} {self.chain.native_symbol} -> {self.chain.wrapped_symbol}")
            return
        self.reporter.info(
            f"Wrapping {amount} {self.chain.native_symbol} (have {balance}, need {required})"
        )
        try:
            await self._call(self.market.wrap, amount)
        except Exception as exc:
            raise BalanceError(f"wrap {amount} failed: {exc}") from exc
        self.reporter.success(f"Wrapped {amount} {self.chain.native_symbol}")

    async def ensure_sufficient_native_asset(self, required: Decimal, account: str) -> None:
        native = await self._call(self.market.get_native_balance, account)
        if native >= required:
            return
        amount = required - native + self.settings.unwrap_gas_buffer
        wrapped = await self._call(self.market.get_payment_asset_balance, account)
        if wrapped < amount:
            raise BalanceError(
                f"need {amount} {self.chain.wrapped_symbol} to unwrap, have {wrapped}"
            )
        if self.dry_run:
            self.reporter.info(f"DRY UNWRAP {amount} {self.chain.wrapped_symbol} -> {self.chain.native_symbol}")
            return
        self.reporter.info(
            f"Unwrapping {amount} {self.chain.wrapped_symbol} (have {native}, need {required})"
        )
        try:
            await self._call(self.market.unwrap, amount)
        except Exception as exc:
            raise BalanceError(f"unwrap {amount} failed: {exc}") from exc
        self.reporter.success(f"Unwrapped {amount} {self.chain.wrapped_symbol}")
