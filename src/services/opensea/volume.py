from __future__ import annotations

from decimal import Decimal
from typing import Any, List, Optional

from .balance import BalanceManager
from .control import Reporter
from .guards import CooldownCache, PurchaseCooldown
from .market import BlockingCaller
from .models import BalanceError, NftListing, TradeEvent, VolumePosition, VolumeSettings
from .storage import TradeLedger
from .strategy import now_ts, parse_listing, volume_relist_price, within_floor_tolerance


class VolumeTrader:
    """Buy the cheapest listing near the floor, then relist it at a markup.

    Each call walks the same gates in order and stops at the first one that
    fails: purchase cooldown, inventory cap, discovery, floor tolerance,
    funding, purchase. Bookkeeping and the relist follow a successful buy.
    """

    def __init__(
        self,
        *,
        market: Any,
        ledger: TradeLedger,
        balance: BalanceManager,
        collection_slug: str,
        contract_address: str,
        settings: VolumeSettings,
        cooldown: PurchaseCooldown,
        recently_listed: CooldownCache,
        recently_purchased: CooldownCache,
        call: BlockingCaller,
        reporter: Reporter,
        dry_run: bool = True,
    ) -> None:
        self.market = market
        self.ledger = ledger
        self.balance = balance
        self.collection_slug = collection_slug
        self.contract_address = contract_address.strip()
        self.settings = settings
        self.cooldown = cooldown
        self.recently_listed = recently_listed
        self.recently_purchased = recently_purchased
        self._call = call
        self.reporter = reporter
        self.dry_run = dry_run

    async def _contract(self) -> Optional[str]:
        if self.contract_address:
            return self.contract_address
        nfts = await self._call(self.market.get_nfts_by_collection, self.collection_slug, 1)
        if nfts and nfts[0].contract:
            self.contract_address = nfts[0].contract
            return self.contract_address
        return None

    async def _owned_count(self, account: str) -> int:
        nfts = await self._call(self.market.get_nfts_by_account, account, self.settings.inventory_limit)
        return sum(1 for x in nfts if x.collection_slug == self.collection_slug)

    async def _cheapest(self, account: str, contract: str) -> Optional[NftListing]:
        rows = await self._call(
            self.market.get_orders_by_side,
            self.collection_slug,
            "listing",
            self.settings.discovery_limit,
        )
        candidates: List[NftListing] = []
        for row in rows:
            listing = parse_listing(row)
            if listing.price is None or listing.price <= 0:
                continue
            if listing.token_address.lower() != contract.lower():
                continue
            if listing.is_made_by(account):
                continue
            candidates.append(listing)
        if not candidates:
            return None
        candidates.sort(key=lambda x: x.price)
        return candidates[0]

    async def _relist(self, listing: NftListing, buy_price: Decimal, account: str) -> None:
        price = volume_relist_price(buy_price, self.settings.relist_markup)
        try:
            existing = await self._call(
                self.market.get_nft_listings, listing.token_address, listing.token_id, 10
            )
        except Exception as exc:
            self.reporter.warn(f"Volume relist check failed #{listing.token_id}, listing anyway: {exc}")
            existing = []
        if any(x.is_made_by(account) for x in existing):
            self.reporter.info(f"Volume relist skipped #{listing.token_id}: already listed")
            return
        try:
            order_hash = await self._call(
                self.market.create_listing,
                listing.token_address,
                listing.token_id,
                price,
                now_ts() + self.settings.relist_expiry_sec,
                self.collection_slug,
            )
        except Exception as exc:
            self.reporter.error(f"VOLUME RELIST FAIL #{listing.token_id}: {exc}")
            return
        self.recently_listed.mark(listing.token_address, listing.token_id)
        self.reporter.success(f"VOLUME RELISTED #{listing.token_id} price={price} hash={order_hash}")

    async def run(self, account: str, floor: Decimal) -> bool:
        """True when a purchase was made (or would have been, in dry-run)."""
        if self.cooldown.active():
            self.reporter.info(f"Volume cooldown {self.cooldown.remaining():.0f}s left")
            return False

        owned = await self._owned_count(account)
        if owned >= self.settings.inventory_cap:
            self.reporter.info(f"Volume inventory cap reached ({owned}/{self.settings.inventory_cap})")
            return False

        contract = await self._contract()
        if not contract:
            self.reporter.warn("Volume: collection contract unknown")
            return False

        listing = await self._cheapest(account, contract)
        if listing is None or listing.price is None:
            self.reporter.info("Volume: no listings to buy")
            return False
        price = listing.price
        if not within_floor_tolerance(price, floor, self.settings.floor_tolerance):
            self.reporter.info(f"Volume: cheapest {price} above floor {floor} tolerance")
            return False

        try:
            await self.balance.ensure_sufficient_native_asset(price, account)
        except BalanceError as exc:
            self.reporter.error(f"VOLUME FUND FAIL #{listing.token_id}: {exc}")
            return False

        if self.dry_run:
            self.reporter.info(f"DRY VOLUME BUY #{listing.token_id} price={price}")
            self.cooldown.stamp()
            return True

        try:
            tx_hash = await self._call(self.market.fulfill_order, listing)
        except Exception as exc:
            self.reporter.error(f"VOLUME BUY FAIL #{listing.token_id}: {exc}")
            return False

        ts = now_ts()
        self.cooldown.stamp()
        self.ledger.upsert_position(
            VolumePosition(
                token_address=listing.token_address,
                token_id=listing.token_id,
                buy_price=price,
                purchase_time=ts,
                collection_slug=self.collection_slug,
            )
        )
        self.recently_purchased.mark(listing.token_address, listing.token_id)
        self.ledger.record_event(
            TradeEvent(
                event_id=tx_hash or f"volume:{listing.order_hash}",
                kind="volume_buy",
                token_address=listing.token_address,
                token_id=listing.token_id,
                collection_slug=self.collection_slug,
                price=price,
                ts=ts,
                tx_hash=tx_hash or "",
            )
        )
        self.reporter.success(f"VOLUME BOUGHT #{listing.token_id} price={price} tx={tx_hash}")
        await self._relist(listing, price, account)
        return True
