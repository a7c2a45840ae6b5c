from __future__ import annotations

from decimal import Decimal
from typing import Any

from .balance import BalanceManager
from .control import Reporter
from .guards import CooldownCache
from .market import BlockingCaller
from .models import BalanceError, NftListing, SniperSettings, StrategyPolicy, TradeEvent
from .storage import TradeLedger
from .strategy import now_ts


class SniperScanner:
    def __init__(
        self,
        *,
        market: Any,
        ledger: TradeLedger,
        balance: BalanceManager,
        collection_slug: str,
        policy: StrategyPolicy,
        settings: SniperSettings,
        recently_purchased: CooldownCache,
        call: BlockingCaller,
        reporter: Reporter,
        dry_run: bool = True,
    ) -> None:
        self.market = market
        self.ledger = ledger
        self.balance = balance
        self.collection_slug = collection_slug
        self.policy = policy
        self.settings = settings
        self.recently_purchased = recently_purchased
        self._call = call
        self.reporter = reporter
        self.dry_run = dry_run

    async def _buy(self, listing: NftListing, account: str) -> bool:
        price = listing.price or Decimal("0")
        try:
            await self.balance.ensure_sufficient_native_asset(price, account)
        except BalanceError as exc:
            self.reporter.error(f"SNIPE FUND FAIL #{listing.token_id}: {exc}")
            return False

        if self.dry_run:
            self.reporter.info(f"DRY SNIPE #{listing.token_id} price={price}")
            return True

        try:
            tx_hash = await self._call(self.market.fulfill_order, listing)
        except Exception as exc:
            self.reporter.error(f"SNIPE FAIL #{listing.token_id}: {exc}")
            return False

        ts = now_ts()
        self.recently_purchased.mark(listing.token_address, listing.token_id)
        self.ledger.record_event(
            TradeEvent(
                event_id=tx_hash or f"snipe:{listing.order_hash}",
                kind="snipe_buy",
                token_address=listing.token_address,
                token_id=listing.token_id,
                collection_slug=self.collection_slug,
                price=price,
                ts=ts,
                tx_hash=tx_hash or "",
            )
        )
        self.reporter.success(f"SNIPED #{listing.token_id} price={price} tx={tx_hash}")
        return True

    async def scan(self, account: str, floor: Decimal) -> bool:
        """Buys the first listing under ``floor * threshold``; at most one per call."""
        threshold = floor * self.policy.sniper_threshold_fraction
        limit = max(1, self.settings.scan_limit)
        nfts = await self._call(self.market.get_nfts_by_collection, self.collection_slug, limit)
        for nft in nfts[:limit]:
            if self.recently_purchased.active(nft.contract, nft.identifier):
                continue
            try:
                listings = await self._call(self.market.get_nft_listings, nft.contract, nft.identifier, 1)
            except Exception as exc:
                self.reporter.warn(f"SNIPE LOOKUP FAIL #{nft.identifier}: {exc}")
                continue
            if not listings:
                continue
            listing = listings[0]
            if listing.price is None or listing.is_made_by(account):
                continue
            if listing.price >= threshold:
                continue
            if not listing.token_address:
                listing.token_address = nft.contract
            if not listing.token_id:
                listing.token_id = nft.identifier
            self.reporter.info(
                f"SNIPE CANDIDATE #{nft.identifier} price={listing.price} threshold={threshold}"
            )
            if await self._buy(listing, account):
                return True
        return False
