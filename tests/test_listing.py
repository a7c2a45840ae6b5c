from decimal import Decimal

import pytest
from conftest import CONTRACT, ME, SLUG, listing, owned

from src.services.opensea.control import ControlPlane, Reporter
from src.services.opensea.guards import CooldownCache
from src.services.opensea.listing import ListingReconciler
from src.services.opensea.market import BlockingCaller
from src.services.opensea.models import (
    HarvestSettings,
    ListingSettings,
    StrategyPolicy,
    Toggles,
    VolumePosition,
    VolumeSettings,
)
from src.services.opensea.storage import TradeLedger


class Harness:
    def __init__(self, market, clock, tmp_path, **kwargs):
        self.sleeps = []

        async def fake_sleep(seconds):
            self.sleeps.append(seconds)

        self.ledger = TradeLedger(str(tmp_path / "l.db"))
        self.recently_listed = CooldownCache(180, clock)
        self.recently_purchased = CooldownCache(120, clock)
        self.toggles = kwargs.pop("toggles", Toggles())
        self.reconciler = ListingReconciler(
            market=market,
            ledger=self.ledger,
            collection_slug=SLUG,
            policy=StrategyPolicy(undercut_amount=Decimal("0.001")),
            settings=kwargs.pop("settings", ListingSettings()),
            volume=kwargs.pop("volume", VolumeSettings()),
            harvest=kwargs.pop("harvest", HarvestSettings()),
            toggles=self.toggles,
            recently_listed=self.recently_listed,
            recently_purchased=self.recently_purchased,
            call=BlockingCaller(5.0),
            reporter=Reporter("listing", ControlPlane()),
            dry_run=False,
            sleep=fake_sleep,
        )


@pytest.mark.asyncio
async def test_lists_unlisted_token_at_undercut(market, clock, tmp_path):
    market.account_nfts = [owned("1"), owned("99", slug="other-collection")]
    h = Harness(market, clock, tmp_path)

    assert await h.reconciler.reconcile(ME, Decimal("1.0")) == 1
    assert market.named_calls("list") == [("list", "1", Decimal("0.999"), None)]


@pytest.mark.asyncio
async def test_reconcile_twice_lists_once(market, clock, tmp_path):
    market.account_nfts = [owned("1")]
    # the marketplace read lags: our new listing is not visible yet
    def lagging_create(*args):
        market.calls.append(("list", str(args[1]), args[2], args[3]))
        return "listing-lag"

    market.create_listing = lagging_create
    h = Harness(market, clock, tmp_path)

    await h.reconciler.reconcile(ME, Decimal("1.0"))
    await h.reconciler.reconcile(ME, Decimal("1.0"))
    assert len(market.named_calls("list")) == 1


@pytest.mark.asyncio
async def test_skips_token_with_our_listing(market, clock, tmp_path):
    market.account_nfts = [owned("1")]
    market.listings[(CONTRACT.lower(), "1")] = [listing("1", "1.2", maker=ME.lower())]
    h = Harness(market, clock, tmp_path)

    assert await h.reconciler.reconcile(ME, Decimal("1.0")) == 0
    assert market.named_calls("list") == []


@pytest.mark.asyncio
async def test_recently_purchased_suppresses_until_expiry(market, clock, tmp_path):
    market.account_nfts = [owned("1")]
    h = Harness(market, clock, tmp_path)
    h.recently_purchased.mark(CONTRACT, "1")

    assert await h.reconciler.reconcile(ME, Decimal("1.0")) == 0
    clock.advance(121)
    assert await h.reconciler.reconcile(ME, Decimal("1.0")) == 1
    assert len(h.recently_purchased) == 0


@pytest.mark.asyncio
async def test_retries_are_bounded(market, clock, tmp_path):
    market.account_nfts = [owned("1")]
    market.listing_failures = 10
    h = Harness(market, clock, tmp_path)

    assert await h.reconciler.reconcile(ME, Decimal("1.0")) == 0
    assert len(market.named_calls("list")) == 3
    assert h.sleeps == [2.0, 2.0]
    assert not h.recently_listed.active(CONTRACT, "1")


@pytest.mark.asyncio
async def test_retry_then_success_stamps_cooldown(market, clock, tmp_path):
    market.account_nfts = [owned("1")]
    market.listing_failures = 1
    h = Harness(market, clock, tmp_path)

    assert await h.reconciler.reconcile(ME, Decimal("1.0")) == 1
    assert len(market.named_calls("list")) == 2
    assert h.recently_listed.active(CONTRACT, "1")


@pytest.mark.asyncio
async def test_volume_inventory_priced_from_floor(market, clock, tmp_path):
    market.account_nfts = [owned("5")]
    h = Harness(market, clock, tmp_path)
    h.ledger.upsert_position(
        VolumePosition(
            token_address=CONTRACT,
            token_id="5",
            buy_price=Decimal("0.9"),
            purchase_time=1,
            collection_slug=SLUG,
        )
    )

    await h.reconciler.reconcile(ME, Decimal("1.0"))
    call = market.named_calls("list")[0]
    assert call[2] == Decimal("1.02")
    assert call[3] is not None


@pytest.mark.asyncio
async def test_reserved_harvest_tokens_skipped_while_harvest_on(market, clock, tmp_path):
    market.account_nfts = [owned("1"), owned("2")]
    h = Harness(
        market,
        clock,
        tmp_path,
        toggles=Toggles(harvest=True),
        harvest=HarvestSettings(reserved_token_ids=("1",)),
    )

    await h.reconciler.reconcile(ME, Decimal("1.0"))
    assert [x[1] for x in market.named_calls("list")] == ["2"]


@pytest.mark.asyncio
async def test_prune_removes_sold_positions(market, clock, tmp_path):
    market.account_nfts = [owned("1")]
    h = Harness(market, clock, tmp_path, volume=VolumeSettings(prune_sold_positions=True))
    for token_id in ("1", "2", "3"):
        h.ledger.upsert_position(
            VolumePosition(
                token_address=CONTRACT,
                token_id=token_id,
                buy_price=Decimal("0.5"),
                purchase_time=1,
                collection_slug=SLUG,
            )
        )
    h.recently_purchased.mark(CONTRACT, "3")

    await h.reconciler.reconcile(ME, Decimal("1.0"))
    kept = sorted(x.token_id for x in h.ledger.get_positions(SLUG))
    assert kept == ["1", "3"]


@pytest.mark.asyncio
async def test_positions_kept_without_prune(market, clock, tmp_path):
    market.account_nfts = []
    h = Harness(market, clock, tmp_path)
    h.ledger.upsert_position(
        VolumePosition(
            token_address=CONTRACT,
            token_id="2",
            buy_price=Decimal("0.5"),
            purchase_time=1,
            collection_slug=SLUG,
        )
    )
    await h.reconciler.reconcile(ME, Decimal("1.0"))
    assert len(h.ledger.get_positions(SLUG)) == 1
