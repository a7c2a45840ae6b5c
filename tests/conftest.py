import sys
from decimal import Decimal
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from src.services.opensea.config_loader import CHAIN_PRESETS
from src.services.opensea.models import (
    ApiRoutes,
    AppConfig,
    BalanceSettings,
    CollectionOffer,
    HarvestSettings,
    ListingSettings,
    NftListing,
    OwnedNft,
    RuntimeSettings,
    SniperSettings,
    StrategyPolicy,
    TelegramSettings,
    Toggles,
    VolumeSettings,
)


ME = "0xMe00000000000000000000000000000000000001"
OTHER = "0xOther000000000000000000000000000000000002"
CONTRACT = "0xC0ffee0000000000000000000000000000000000"
SLUG = "test-collection"


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeMarket:
    """Synchronous in-memory stand-in for OpenSeaMarket."""

    def __init__(self) -> None:
        self.address = ME
        self.floor = Decimal("1.0")
        self.offers: List[CollectionOffer] = []
        self.account_nfts: List[OwnedNft] = []
        self.collection_nfts: List[OwnedNft] = []
        self.listings: Dict[Tuple[str, str], List[NftListing]] = {}
        self.orders: List[dict] = []
        self.native = Decimal("10")
        self.wrapped = Decimal("10")
        self.calls: List[tuple] = []
        self.listing_failures = 0
        self.fail_fulfill = False
        self.fail_wrap = False
        self.fail_cancel: set = set()
        self.on_floor = None
        self._seq = 0

    def _next(self, prefix: str) -> str:
        self._seq += 1
        return f"{prefix}-{self._seq}"

    def get_address(self) -> str:
        return self.address

    def get_collection_floor(self, slug: str) -> Decimal:
        self.calls.append(("floor", slug))
        if self.on_floor is not None:
            self.on_floor()
        return self.floor

    def get_collection_offers(self, slug: str, limit: int = 10) -> List[CollectionOffer]:
        return list(self.offers)

    def get_nfts_by_account(self, address: str, limit: int = 50) -> List[OwnedNft]:
        return list(self.account_nfts)

    def get_nfts_by_collection(self, slug: str, limit: int = 50) -> List[OwnedNft]:
        return list(self.collection_nfts)[:limit]

    def get_nft_listings(self, contract: str, token_id: str, limit: int = 10) -> List[NftListing]:
        return list(self.listings.get((contract.lower(), str(token_id)), []))[:limit]

    def get_orders_by_side(self, slug: str, side: str, limit: int = 100) -> List[dict]:
        return list(self.orders)[:limit]

    def create_collection_offer(self, slug: str, amount: Decimal, expiration_ts: int) -> str:
        self.calls.append(("offer", slug, amount))
        return self._next("offer")

    def create_listing(
        self,
        contract: str,
        token_id: str,
        amount: Decimal,
        expiration_ts: Optional[int] = None,
        slug: str = "",
    ) -> str:
        self.calls.append(("list", str(token_id), amount, expiration_ts))
        if self.listing_failures > 0:
            self.listing_failures -= 1
            raise RuntimeError("HTTP 500: listing rejected")
        order_hash = self._next("listing")
        self.listings.setdefault((contract.lower(), str(token_id)), []).append(
            NftListing(
                order_hash=order_hash,
                price=amount,
                maker=self.address,
                token_address=contract,
                token_id=str(token_id),
                expiration_ts=expiration_ts,
                protocol_address="",
            )
        )
        return order_hash

    def cancel_order(self, order_hash: str) -> bool:
        self.calls.append(("cancel", order_hash))
        if order_hash in self.fail_cancel:
            raise RuntimeError("HTTP 404: order not found")
        return True

    def fulfill_order(self, listing: NftListing) -> str:
        self.calls.append(("buy", listing.token_id, listing.price))
        if self.fail_fulfill:
            raise RuntimeError("HTTP 400: order already filled")
        return self._next("0xtx")

    def wrap(self, amount: Decimal) -> str:
        self.calls.append(("wrap", amount))
        if self.fail_wrap:
            raise RuntimeError("insufficient funds for gas")
        self.native -= amount
        self.wrapped += amount
        return self._next("0xwrap")

    def unwrap(self, amount: Decimal) -> str:
        self.calls.append(("unwrap", amount))
        self.wrapped -= amount
        self.native += amount
        return self._next("0xunwrap")

    def get_native_balance(self, address: str) -> Decimal:
        return self.native

    def get_payment_asset_balance(self, address: str) -> Decimal:
        return self.wrapped

    def named_calls(self, name: str) -> List[tuple]:
        return [x for x in self.calls if x[0] == name]


def owned(token_id: str, slug: str = SLUG, contract: str = CONTRACT) -> OwnedNft:
    return OwnedNft(contract=contract, identifier=token_id, collection_slug=slug)


def listing(token_id: str, price: str, maker: str = OTHER, contract: str = CONTRACT) -> NftListing:
    return NftListing(
        order_hash=f"hash-{token_id}-{price}",
        price=Decimal(price),
        maker=maker,
        token_address=contract,
        token_id=token_id,
        expiration_ts=None,
        protocol_address="",
    )


def raw_listing(token_id: str, price_wei: int, maker: str = OTHER, contract: str = CONTRACT) -> dict:
    return {
        "order_hash": f"raw-{token_id}",
        "protocol_address": "0x0000000000000068F116a894984e2DAE9f3eD1ff",
        "price": {"current": {"currency": "ETH", "decimals": 18, "value": str(price_wei)}},
        "protocol_data": {
            "parameters": {
                "offerer": maker,
                "offer": [{"itemType": 2, "token": contract, "identifierOrCriteria": token_id}],
                "endTime": "1900000000",
            }
        },
    }


def build_config(tmp_path: Path, **overrides) -> AppConfig:
    values = dict(
        collection_slug=SLUG,
        contract_address=CONTRACT,
        api_base="https://api.opensea.io",
        api_key="test-key",
        private_key="0x" + "11" * 32,
        chain=CHAIN_PRESETS["ethereum"],
        routes=ApiRoutes(),
        runtime=RuntimeSettings(dry_run=False, poll_interval=0.01, call_timeout=5.0),
        policy=StrategyPolicy(),
        volume=VolumeSettings(),
        listing=ListingSettings(retry_backoff_sec=0.0),
        sniper=SniperSettings(),
        harvest=HarvestSettings(),
        balance=BalanceSettings(),
        toggles=Toggles(),
        state_db_path=str(tmp_path / "state.db"),
        telegram=TelegramSettings(),
        config_file="",
    )
    values.update(overrides)
    return AppConfig(**values)


@pytest.fixture
def market() -> FakeMarket:
    return FakeMarket()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
