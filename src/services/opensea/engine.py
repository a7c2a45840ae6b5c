from __future__ import annotations

import asyncio
import time
from decimal import Decimal
from typing import Any, Awaitable, Callable, Optional

import requests

from .balance import BalanceManager
from .control import ControlPlane, Reporter, log
from .guards import CooldownCache, PurchaseCooldown
from .harvest import HarvestLister
from .listing import ListingReconciler
from .market import BlockingCaller
from .models import AppConfig, BalanceError, MarketObservation
from .offers import OfferManager
from .sniper import SniperScanner
from .storage import TradeLedger
from .strategy import price_offer, second_best_price, select_best_offer
from .telegram_bot import TelegramSupervisor
from .volume import VolumeTrader


class MarketMaker:
    """One collection, one account, one cycle at a time.

    Operator commands queued on the control plane are applied only at the
    checkpoints between cycle steps, never in the middle of an action.
    """

    def __init__(
        self,
        *,
        config: AppConfig,
        market: Any,
        ledger: TradeLedger,
        control: ControlPlane,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.config = config
        self.market = market
        self.ledger = ledger
        self.control = control
        self.toggles = control.toggles
        self.runtime = config.runtime
        self.policy = config.policy
        self.slug = config.collection_slug
        self.reporter = Reporter("engine", control)
        self.account = ""
        self.last_bid: Optional[Decimal] = None

        dry_run = config.runtime.dry_run
        self._call = BlockingCaller(config.runtime.call_timeout)
        self.recently_listed = CooldownCache(config.listing.recently_listed_window_sec, clock)
        self.recently_purchased = CooldownCache(config.listing.recently_purchased_window_sec, clock)
        self.purchase_cooldown = PurchaseCooldown(config.volume.purchase_cooldown_sec, clock)

        self.balance = BalanceManager(
            market=market,
            settings=config.balance,
            chain=config.chain,
            call=self._call,
            reporter=Reporter("balance", control),
            dry_run=dry_run,
        )
        self.offers = OfferManager(
            market=market,
            call=self._call,
            reporter=Reporter("offers", control),
            dry_run=dry_run,
        )
        self.reconciler = ListingReconciler(
            market=market,
            ledger=ledger,
            collection_slug=self.slug,
            policy=self.policy,
            settings=config.listing,
            volume=config.volume,
            harvest=config.harvest,
            toggles=self.toggles,
            recently_listed=self.recently_listed,
            recently_purchased=self.recently_purchased,
            call=self._call,
            reporter=Reporter("listing", control),
            dry_run=dry_run,
            sleep=sleep,
        )
        self.harvester = HarvestLister(
            market=market,
            ledger=ledger,
            collection_slug=self.slug,
            policy=self.policy,
            settings=config.harvest,
            recently_listed=self.recently_listed,
            call=self._call,
            reporter=Reporter("harvest", control),
            dry_run=dry_run,
        )
        self.sniper = SniperScanner(
            market=market,
            ledger=ledger,
            balance=self.balance,
            collection_slug=self.slug,
            policy=self.policy,
            settings=config.sniper,
            recently_purchased=self.recently_purchased,
            call=self._call,
            reporter=Reporter("sniper", control),
            dry_run=dry_run,
        )
        self.volume = VolumeTrader(
            market=market,
            ledger=ledger,
            balance=self.balance,
            collection_slug=self.slug,
            contract_address=config.contract_address,
            settings=config.volume,
            cooldown=self.purchase_cooldown,
            recently_listed=self.recently_listed,
            recently_purchased=self.recently_purchased,
            call=self._call,
            reporter=Reporter("volume", control),
            dry_run=dry_run,
        )

    def _checkpoint(self) -> bool:
        """Applies queued commands; True when a stop is pending."""
        self.control.drain()
        return self.control.stop_requested

    async def _observe(self) -> MarketObservation:
        floor = await self._call(self.market.get_collection_floor, self.slug)
        offers = await self._call(self.market.get_collection_offers, self.slug, self.runtime.offers_lookup_limit)
        best, is_ours = select_best_offer(offers, self.account)
        second = Decimal("0")
        if self.policy.use_second_best_strategy:
            try:
                second = second_best_price(offers)
            except (ArithmeticError, ValueError) as exc:
                self.reporter.warn(f"second-best offer unavailable: {exc}")
        return MarketObservation(
            floor_price=floor,
            best_offer=best,
            best_offer_is_ours=is_ours,
            second_best_offer=second,
        )

    async def _broadcast_stats(self, obs: MarketObservation) -> None:
        balance = await self._call(self.market.get_payment_asset_balance, self.account)
        your_offer = obs.best_offer if obs.best_offer_is_ours else self.last_bid
        self.control.broadcast(
            {
                "type": "stats",
                "floor": str(obs.floor_price),
                "bestOffer": str(obs.best_offer),
                "yourOffer": str(your_offer) if your_offer is not None else None,
                "balance": str(balance),
            }
        )

    async def _bid(self, obs: MarketObservation) -> None:
        if obs.best_offer_is_ours:
            self.reporter.info(f"Best offer {obs.best_offer} is ours, holding")
            return
        target = price_offer(obs.best_offer, obs.second_best_offer, obs.floor_price, self.policy)
        if target is None:
            self.reporter.info(
                f"Bid above ceiling (best={obs.best_offer} floor={obs.floor_price}), skipping"
            )
            return
        if not self.toggles.bidding:
            self.reporter.info(f"Bidding disabled, target would be {target}")
            return
        try:
            await self.balance.ensure_sufficient_payment_asset(target, self.account)
        except BalanceError as exc:
            self.reporter.error(f"BID ABORTED: {exc}")
            return
        try:
            await self.offers.place_collection_offer(self.slug, target, self.policy.offer_duration_seconds)
            self.last_bid = target
        except Exception as exc:
            self.reporter.error(f"OFFER FAIL price={target}: {exc}")

    async def _step(self, name: str, fn: Callable[[str, Decimal], Awaitable[Any]], floor: Decimal) -> None:
        try:
            await fn(self.account, floor)
        except Exception as exc:
            self.reporter.error(f"{name.upper()} FAIL: {exc}")

    async def _handle_signals(self) -> bool:
        """Runs pending cancel or stop; False when the loop must exit."""
        if self.control.stop_requested:
            await self.offers.cancel_all_tracked()
            self.reporter.info("Stopped")
            return False
        if self.control.take_cancel_request():
            await self.offers.cancel_all_tracked()
        return True

    async def run_cycle(self) -> bool:
        if self._checkpoint():
            return await self._handle_signals()
        if not self.account:
            self.account = await self._call(self.market.get_address)

        obs = await self._observe()
        await self._broadcast_stats(obs)
        await self._bid(obs)

        for name, enabled, fn in (
            ("harvest", lambda: self.toggles.harvest, self.harvester.run),
            ("sniper", lambda: self.toggles.sniper, self.sniper.scan),
            ("volume", lambda: self.toggles.volume, self.volume.run),
        ):
            if self._checkpoint():
                return await self._handle_signals()
            if enabled():
                await self._step(name, fn, obs.floor_price)

        if self._checkpoint():
            return await self._handle_signals()
        if not self.toggles.volume:
            await self._step("reconcile", self.reconciler.reconcile, obs.floor_price)

        self._checkpoint()
        return await self._handle_signals()

    async def run(self, once: bool = False) -> int:
        self.reporter.info(
            f"Starting {self.slug} on {self.config.chain.name} dry_run={self.runtime.dry_run}"
        )
        while True:
            started = time.perf_counter()
            try:
                if not await self.run_cycle():
                    return 0
            except asyncio.CancelledError:
                raise
            except (requests.RequestException, asyncio.TimeoutError) as exc:
                self.reporter.error(f"NETWORK ERROR: {exc!r}")
            except Exception as exc:
                self.reporter.error(f"CYCLE ERROR: {exc}")
            # signals still run when the cycle failed part way
            self._checkpoint()
            if not await self._handle_signals():
                return 0
            if once:
                return 0
            elapsed = time.perf_counter() - started
            await self.control.wait(self.runtime.poll_interval - elapsed)


class OpenSeaEngine:
    def __init__(self, app_config: AppConfig, market: Any) -> None:
        self.app_config = app_config
        self.ledger = TradeLedger(app_config.state_db_path)
        self.control = ControlPlane(app_config.toggles)
        self.maker = MarketMaker(
            config=app_config,
            market=market,
            ledger=self.ledger,
            control=self.control,
        )
        self.telegram = TelegramSupervisor(
            settings=app_config.telegram,
            control=self.control,
            ledger=self.ledger,
            collection_slug=app_config.collection_slug,
            logger=lambda msg: log("telegram", msg),
        )

    async def run(self, once: bool = False) -> int:
        await self.telegram.start()
        try:
            return await self.maker.run(once=once)
        finally:
            await self.telegram.stop()
