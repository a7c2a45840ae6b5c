from __future__ import annotations

import asyncio
from decimal import Decimal
from typing import Any, Awaitable, Callable, List, Optional, Set, Tuple

from .control import Reporter
from .guards import CooldownCache
from .market import BlockingCaller
from .models import (
    HarvestSettings,
    ListingSettings,
    OwnedNft,
    StrategyPolicy,
    Toggles,
    VolumeSettings,
)
from .storage import TradeLedger
from .strategy import now_ts, price_listing, volume_inventory_price


Sleeper = Callable[[float], Awaitable[Any]]


class ListingReconciler:
    """Keeps every owned collection token listed.

    A token is left alone when it was just bought, was just listed by us, or
    already carries one of our listings on the marketplace.
    """

    def __init__(
        self,
        *,
        market: Any,
        ledger: TradeLedger,
        collection_slug: str,
        policy: StrategyPolicy,
        settings: ListingSettings,
        volume: VolumeSettings,
        harvest: HarvestSettings,
        toggles: Toggles,
        recently_listed: CooldownCache,
        recently_purchased: CooldownCache,
        call: BlockingCaller,
        reporter: Reporter,
        dry_run: bool = True,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        self.market = market
        self.ledger = ledger
        self.collection_slug = collection_slug
        self.policy = policy
        self.settings = settings
        self.volume = volume
        self.harvest = harvest
        self.toggles = toggles
        self.recently_listed = recently_listed
        self.recently_purchased = recently_purchased
        self._call = call
        self.reporter = reporter
        self.dry_run = dry_run
        self._sleep = sleep

    async def _owned(self, account: str) -> List[OwnedNft]:
        nfts = await self._call(self.market.get_nfts_by_account, account, self.settings.inventory_limit)
        return [x for x in nfts if x.collection_slug == self.collection_slug]

    def _prune(self, owned: List[OwnedNft]) -> int:
        held: Set[Tuple[str, str]] = {x.key for x in owned}
        removed = 0
        for position in self.ledger.get_positions(self.collection_slug):
            key = (position.token_address.lower(), position.token_id)
            if key in held:
                continue
            if self.recently_purchased.active(position.token_address, position.token_id):
                continue
            if self.ledger.remove_position(position.token_address, position.token_id):
                removed += 1
                self.reporter.info(f"Position closed {position.token_address}:{position.token_id}")
        return removed

    def _price_for(self, nft: OwnedNft, floor: Decimal) -> Tuple[Optional[Decimal], Optional[int]]:
        position = self.ledger.get_position(nft.contract, nft.identifier)
        if position is not None:
            price = volume_inventory_price(floor, self.settings.volume_floor_markup)
            return price, now_ts() + self.settings.volume_expiry_sec
        if self.toggles.harvest and nft.identifier in self.harvest.reserved_token_ids:
            return None, None
        return price_listing(floor, self.policy), None

    async def _submit(self, nft: OwnedNft, price: Decimal, expiration_ts: Optional[int]) -> bool:
        attempts = max(1, self.settings.max_attempts)
        for attempt in range(1, attempts + 1):
            try:
                order_hash = await self._call(
                    self.market.create_listing,
                    nft.contract,
                    nft.identifier,
                    price,
                    expiration_ts,
                    self.collection_slug,
                )
                self.reporter.success(f"LISTED #{nft.identifier} price={price} hash={order_hash}")
                return True
            except Exception as exc:
                self.reporter.warn(f"LIST FAIL #{nft.identifier} attempt {attempt}/{attempts}: {exc}")
                if attempt < attempts:
                    await self._sleep(self.settings.retry_backoff_sec)
        self.reporter.error(f"LIST GAVE UP #{nft.identifier} until next cycle")
        return False

    async def _reconcile_one(self, nft: OwnedNft, account: str, floor: Decimal) -> bool:
        if self.recently_purchased.active(nft.contract, nft.identifier):
            return False
        if self.recently_listed.active(nft.contract, nft.identifier):
            return False

        listings = await self._call(
            self.market.get_nft_listings,
            nft.contract,
            nft.identifier,
            self.settings.listings_lookup_limit,
        )
        if any(x.is_made_by(account) for x in listings):
            return False

        price, expiration_ts = self._price_for(nft, floor)
        if price is None:
            return False
        if price <= 0:
            self.reporter.warn(f"Skip #{nft.identifier}: non-positive price {price}")
            return False

        if self.dry_run:
            self.reporter.info(f"DRY LIST #{nft.identifier} price={price}")
            self.recently_listed.mark(nft.contract, nft.identifier)
            return True

        if not await self._submit(nft, price, expiration_ts):
            return False
        self.recently_listed.mark(nft.contract, nft.identifier)
        return True

    async def reconcile(self, account: str, floor: Decimal) -> int:
        owned = await self._owned(account)
        if self.volume.prune_sold_positions:
            self._prune(owned)
        listed = 0
        for nft in owned:
            try:
                if await self._reconcile_one(nft, account, floor):
                    listed += 1
            except Exception as exc:
                self.reporter.error(f"RECONCILE FAIL #{nft.identifier}: {exc}")
        return listed
