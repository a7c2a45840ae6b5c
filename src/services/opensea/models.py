from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple


OFFER_PRICE_STEP = Decimal("0.0001")
LISTING_PRICE_STEP = Decimal("0.000001")


class ConfigError(RuntimeError):
    pass


class BalanceError(RuntimeError):
    pass


@dataclass(frozen=True)
class StrategyPolicy:
    max_offer_fraction_of_floor: Decimal = Decimal("0.985")
    bid_increment: Decimal = Decimal("0.0001")
    undercut_amount: Decimal = Decimal("0.005")
    offer_duration_seconds: int = 600
    sniper_threshold_fraction: Decimal = Decimal("0.7")
    harvest_undercut_amount: Decimal = Decimal("0.001")
    use_second_best_strategy: bool = False


@dataclass(frozen=True)
class VolumeSettings:
    purchase_cooldown_sec: float = 30.0
    inventory_cap: int = 4
    floor_tolerance: Decimal = Decimal("0.01")
    relist_markup: Decimal = Decimal("0.015")
    relist_expiry_sec: int = 600
    discovery_limit: int = 100
    inventory_limit: int = 100
    prune_sold_positions: bool = False


@dataclass(frozen=True)
class ListingSettings:
    inventory_limit: int = 50
    listings_lookup_limit: int = 10
    recently_listed_window_sec: float = 180.0
    recently_purchased_window_sec: float = 120.0
    max_attempts: int = 3
    retry_backoff_sec: float = 2.0
    volume_floor_markup: Decimal = Decimal("0.02")
    volume_expiry_sec: int = 600


@dataclass(frozen=True)
class SniperSettings:
    scan_limit: int = 20


@dataclass(frozen=True)
class HarvestSettings:
    reserved_token_ids: Tuple[str, ...] = ()
    min_price: Decimal = Decimal("0.001")
    inventory_limit: int = 50


@dataclass(frozen=True)
class BalanceSettings:
    wrap_buffer: Decimal = Decimal("0.001")
    unwrap_gas_buffer: Decimal = Decimal("0.01")


@dataclass
class Toggles:
    bidding: bool = True
    harvest: bool = False
    sniper: bool = True
    volume: bool = True


@dataclass
class RuntimeSettings:
    dry_run: bool = True
    poll_interval: float = 30.0
    request_timeout: float = 15.0
    call_timeout: float = 120.0
    offers_lookup_limit: int = 10
    default_listing_expiry_sec: int = 30 * 24 * 3600


@dataclass
class ApiRoutes:
    collection: str = "/api/v2/collections/{slug}"
    collection_stats: str = "/api/v2/collections/{slug}/stats"
    collection_offers: str = "/api/v2/offers/collection/{slug}"
    collection_nfts: str = "/api/v2/collection/{slug}/nfts"
    account_nfts: str = "/api/v2/chain/{chain}/account/{address}/nfts"
    nft_listings: str = "/api/v2/orders/{chain}/{protocol}/listings"
    collection_listings: str = "/api/v2/listings/collection/{slug}/all"
    build_offer: str = "/api/v2/offers/build"
    create_offer: str = "/api/v2/offers"
    create_listing: str = "/api/v2/orders/{chain}/{protocol}/listings"
    fulfillment_data: str = "/api/v2/listings/fulfillment_data"
    cancel_order: str = "/api/v2/orders/chain/{chain}/protocol/{protocol_address}/{order_hash}/cancel"


@dataclass(frozen=True)
class ChainSettings:
    name: str
    api_chain: str
    chain_id: int
    rpc_url: str
    payment_token_address: str
    native_symbol: str
    wrapped_symbol: str


@dataclass
class TelegramSettings:
    enabled: bool = False
    token: str = ""
    chat_ids: Tuple[int, ...] = ()


@dataclass
class AppConfig:
    collection_slug: str
    contract_address: str
    api_base: str
    api_key: str
    private_key: str
    chain: ChainSettings
    routes: ApiRoutes
    runtime: RuntimeSettings
    policy: StrategyPolicy
    volume: VolumeSettings
    listing: ListingSettings
    sniper: SniperSettings
    harvest: HarvestSettings
    balance: BalanceSettings
    toggles: Toggles
    state_db_path: str
    telegram: TelegramSettings
    config_file: str


@dataclass(frozen=True)
class MarketObservation:
    floor_price: Decimal
    best_offer: Decimal
    best_offer_is_ours: bool
    second_best_offer: Decimal = Decimal("0")


@dataclass
class CollectionOffer:
    order_hash: str
    price: Decimal
    offerer: str
    remaining_quantity: int
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class OwnedNft:
    contract: str
    identifier: str
    collection_slug: str
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def key(self) -> Tuple[str, str]:
        return token_key(self.contract, self.identifier)


@dataclass
class NftListing:
    order_hash: str
    price: Optional[Decimal]
    maker: str
    token_address: str
    token_id: str
    expiration_ts: Optional[int]
    protocol_address: str
    raw: Dict[str, Any] = field(default_factory=dict)

    def is_made_by(self, account: str) -> bool:
        return bool(self.maker) and self.maker.lower() == account.lower()


@dataclass
class VolumePosition:
    token_address: str
    token_id: str
    buy_price: Decimal
    purchase_time: int
    collection_slug: str


@dataclass
class TradeEvent:
    event_id: str
    kind: str  # "volume_buy" | "snipe_buy"
    token_address: str
    token_id: str
    collection_slug: str
    price: Decimal
    ts: int
    tx_hash: str = ""


def token_key(token_address: str, token_id: str) -> Tuple[str, str]:
    return token_address.strip().lower(), str(token_id).strip()
