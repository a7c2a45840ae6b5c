from decimal import Decimal

from conftest import CONTRACT, SLUG

from src.services.opensea.models import TradeEvent, VolumePosition
from src.services.opensea.storage import TradeLedger


def _position(token_id: str, price: str = "0.5", ts: int = 100) -> VolumePosition:
    return VolumePosition(
        token_address=CONTRACT,
        token_id=token_id,
        buy_price=Decimal(price),
        purchase_time=ts,
        collection_slug=SLUG,
    )


def test_positions_survive_reopen(tmp_path):
    db = str(tmp_path / "nested" / "ledger.db")
    TradeLedger(db).upsert_position(_position("1", "0.51"))

    reopened = TradeLedger(db)
    found = reopened.get_position(CONTRACT.upper(), "1")
    assert found is not None
    assert found.buy_price == Decimal("0.51")
    assert found.token_address == CONTRACT.lower()


def test_upsert_overwrites_same_token(tmp_path):
    ledger = TradeLedger(str(tmp_path / "l.db"))
    ledger.upsert_position(_position("1", "0.5", ts=100))
    ledger.upsert_position(_position("1", "0.7", ts=200))
    rows = ledger.get_positions(SLUG)
    assert len(rows) == 1
    assert rows[0].buy_price == Decimal("0.7")
    assert rows[0].purchase_time == 200


def test_remove_position(tmp_path):
    ledger = TradeLedger(str(tmp_path / "l.db"))
    ledger.upsert_position(_position("1"))
    assert ledger.remove_position(CONTRACT, "1") is True
    assert ledger.remove_position(CONTRACT, "1") is False
    assert ledger.get_position(CONTRACT, "1") is None


def test_events_are_deduplicated_and_counted(tmp_path):
    ledger = TradeLedger(str(tmp_path / "l.db"))
    event = TradeEvent(
        event_id="0xtx1",
        kind="volume_buy",
        token_address=CONTRACT,
        token_id="1",
        collection_slug=SLUG,
        price=Decimal("0.5"),
        ts=1000,
    )
    assert ledger.record_event(event) is True
    assert ledger.record_event(event) is False
    ledger.upsert_position(_position("1"))

    stats = ledger.get_stats()
    assert stats.buy_count == 1
    assert stats.total_buy == Decimal("0.5")
    assert stats.open_positions == 1
    assert ledger.get_stats(since_ts=2000).buy_count == 0
    assert ledger.get_recent_events()[0]["event_id"] == "0xtx1"
