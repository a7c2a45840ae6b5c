from decimal import Decimal

import pytest
from conftest import CONTRACT, ME, SLUG, listing, owned, raw_listing

from src.services.opensea.control import ControlPlane, Reporter
from src.services.opensea.guards import CooldownCache
from src.services.opensea.harvest import HarvestLister
from src.services.opensea.market import BlockingCaller
from src.services.opensea.models import HarvestSettings, StrategyPolicy, VolumePosition
from src.services.opensea.storage import TradeLedger


def _lister(market, clock, tmp_path, settings=None):
    ledger = TradeLedger(str(tmp_path / "l.db"))
    lister = HarvestLister(
        market=market,
        ledger=ledger,
        collection_slug=SLUG,
        policy=StrategyPolicy(harvest_undercut_amount=Decimal("0.001")),
        settings=settings or HarvestSettings(),
        recently_listed=CooldownCache(180, clock),
        call=BlockingCaller(5.0),
        reporter=Reporter("harvest", ControlPlane()),
        dry_run=False,
    )
    return lister, ledger


@pytest.mark.asyncio
async def test_lists_one_token_per_cycle(market, clock, tmp_path):
    market.account_nfts = [owned("1"), owned("2")]
    lister, _ = _lister(market, clock, tmp_path)

    assert await lister.run(ME, Decimal("1.0")) is True
    assert market.named_calls("list") == [("list", "1", Decimal("0.999"), None)]


@pytest.mark.asyncio
async def test_skips_pass_when_floor_is_ours(market, clock, tmp_path):
    market.account_nfts = [owned("1")]
    market.orders = [raw_listing("1", 900_000_000_000_000_000, maker=ME), raw_listing("2", 10**18)]
    lister, _ = _lister(market, clock, tmp_path)

    assert await lister.run(ME, Decimal("1.0")) is False
    assert market.named_calls("list") == []


@pytest.mark.asyncio
async def test_skips_token_already_at_target(market, clock, tmp_path):
    market.account_nfts = [owned("1"), owned("2")]
    market.listings[(CONTRACT.lower(), "1")] = [listing("1", "0.99905", maker=ME)]
    lister, _ = _lister(market, clock, tmp_path)

    await lister.run(ME, Decimal("1.0"))
    assert [x[1] for x in market.named_calls("list")] == ["2"]


@pytest.mark.asyncio
async def test_ignores_volume_inventory_and_respects_reserved(market, clock, tmp_path):
    market.account_nfts = [owned("1"), owned("2"), owned("3")]
    lister, ledger = _lister(
        market, clock, tmp_path, settings=HarvestSettings(reserved_token_ids=("2", "3"))
    )
    ledger.upsert_position(
        VolumePosition(
            token_address=CONTRACT,
            token_id="2",
            buy_price=Decimal("0.5"),
            purchase_time=1,
            collection_slug=SLUG,
        )
    )

    await lister.run(ME, Decimal("1.0"))
    assert [x[1] for x in market.named_calls("list")] == ["3"]


@pytest.mark.asyncio
async def test_recently_listed_token_not_relisted(market, clock, tmp_path):
    market.account_nfts = [owned("1")]
    lister, _ = _lister(market, clock, tmp_path)

    await lister.run(ME, Decimal("1.0"))
    market.listings.clear()
    assert await lister.run(ME, Decimal("1.0")) is False
    assert len(market.named_calls("list")) == 1
