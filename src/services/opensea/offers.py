from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Set

from .control import Reporter
from .market import BlockingCaller
from .strategy import now_ts


@dataclass
class CancelSummary:
    succeeded: int = 0
    failed: int = 0


class OfferManager:
    def __init__(
        self,
        *,
        market: Any,
        call: BlockingCaller,
        reporter: Reporter,
        dry_run: bool = True,
    ) -> None:
        self.market = market
        self._call = call
        self.reporter = reporter
        self.dry_run = dry_run
        self.tracked: Set[str] = set()

    async def place_collection_offer(self, slug: str, amount: Decimal, duration_seconds: int) -> str:
        expiration_ts = now_ts() + int(duration_seconds)
        if self.dry_run:
            self.reporter.info(f"DRY OFFER {slug} price={amount} expires={expiration_ts}")
            return ""
        order_hash = await self._call(self.market.create_collection_offer, slug, amount, expiration_ts)
        self.tracked.add(order_hash)
        self.reporter.success(f"OFFER SENT {slug} price={amount} hash={order_hash}")
        return order_hash

    async def cancel_all_tracked(self) -> CancelSummary:
        """Attempts every tracked hash once; the set is empty afterwards."""
        summary = CancelSummary()
        hashes = sorted(self.tracked)
        self.tracked.clear()
        if not hashes:
            self.reporter.info("No tracked offers to cancel")
            return summary
        for order_hash in hashes:
            if self.dry_run:
                self.reporter.info(f"DRY CANCEL offer={order_hash}")
                summary.succeeded += 1
                continue
            try:
                ok = await self._call(self.market.cancel_order, order_hash)
            except Exception as exc:
                summary.failed += 1
                self.reporter.error(f"CANCEL FAIL offer={order_hash}: {exc}")
                continue
            if ok:
                summary.succeeded += 1
            else:
                summary.failed += 1
                self.reporter.error(f"CANCEL FAIL offer={order_hash}: rejected")
        self.reporter.info(
            f"Cancelled offers ok={summary.succeeded} failed={summary.failed}"
        )
        return summary
