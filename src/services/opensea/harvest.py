from __future__ import annotations

from decimal import Decimal
from typing import Any, List

from .control import Reporter
from .guards import CooldownCache
from .market import BlockingCaller
from .models import HarvestSettings, OwnedNft, StrategyPolicy
from .storage import TradeLedger
from .strategy import harvest_price, parse_listing


HARVEST_PRICE_TOLERANCE = Decimal("0.0001")


class HarvestLister:
    def __init__(
        self,
        *,
        market: Any,
        ledger: TradeLedger,
        collection_slug: str,
        policy: StrategyPolicy,
        settings: HarvestSettings,
        recently_listed: CooldownCache,
        call: BlockingCaller,
        reporter: Reporter,
        dry_run: bool = True,
    ) -> None:
        self.market = market
        self.ledger = ledger
        self.collection_slug = collection_slug
        self.policy = policy
        self.settings = settings
        self.recently_listed = recently_listed
        self._call = call
        self.reporter = reporter
        self.dry_run = dry_run

    async def _floor_is_ours(self, account: str) -> bool:
        rows = await self._call(self.market.get_orders_by_side, self.collection_slug, "listing", 100)
        listings = [parse_listing(x) for x in rows]
        priced = [x for x in listings if x.price is not None]
        if not priced:
            return False
        cheapest = min(priced, key=lambda x: x.price)
        return cheapest.is_made_by(account)

    async def _candidates(self, account: str) -> List[OwnedNft]:
        nfts = await self._call(self.market.get_nfts_by_account, account, self.settings.inventory_limit)
        out: List[OwnedNft] = []
        reserved = set(self.settings.reserved_token_ids)
        for nft in nfts:
            if nft.collection_slug != self.collection_slug:
                continue
            if reserved and nft.identifier not in reserved:
                continue
            if self.ledger.get_position(nft.contract, nft.identifier) is not None:
                continue
            out.append(nft)
        return out

    async def run(self, account: str, floor: Decimal) -> bool:
        """Lists at most one token just under the floor; True when it did."""
        if await self._floor_is_ours(account):
            self.reporter.info("Harvest: floor listing is already ours")
            return False

        target = harvest_price(floor, self.policy.harvest_undercut_amount, self.settings.min_price)
        for nft in await self._candidates(account):
            if self.recently_listed.active(nft.contract, nft.identifier):
                continue
            try:
                listings = await self._call(self.market.get_nft_listings, nft.contract, nft.identifier, 10)
                ours = [x for x in listings if x.is_made_by(account) and x.price is not None]
                if any(abs(x.price - target) <= HARVEST_PRICE_TOLERANCE for x in ours):
                    continue
                if self.dry_run:
                    self.reporter.info(f"DRY HARVEST #{nft.identifier} price={target}")
                else:
                    order_hash = await self._call(
                        self.market.create_listing,
                        nft.contract,
                        nft.identifier,
                        target,
                        None,
                        self.collection_slug,
                    )
                    self.reporter.success(f"HARVEST LISTED #{nft.identifier} price={target} hash={order_hash}")
                self.recently_listed.mark(nft.contract, nft.identifier)
                return True
            except Exception as exc:
                self.reporter.error(f"HARVEST FAIL #{nft.identifier}: {exc}")
        return False
