from __future__ import annotations

import json
import os
from dataclasses import replace
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .models import (
    ApiRoutes,
    AppConfig,
    BalanceSettings,
    ChainSettings,
    ConfigError,
    HarvestSettings,
    ListingSettings,
    RuntimeSettings,
    SniperSettings,
    StrategyPolicy,
    TelegramSettings,
    Toggles,
    VolumeSettings,
)


API_BASE_DEFAULT = "https://api.opensea.io"
CONFIG_FILE_DEFAULT = "configs/opensea.json"
STATE_DB_DEFAULT = "data/opensea_trader.db"

CHAIN_PRESETS: Dict[str, ChainSettings] = {
    "ethereum": ChainSettings(
        name="ethereum",
        api_chain="ethereum",
        chain_id=1,
        rpc_url="https://mainnet.infura.io/v3/YOUR_INFURA_KEY",
        payment_token_address="0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2",
        native_symbol="ETH",
        wrapped_symbol="WETH",
    ),
    "polygon": ChainSettings(
        name="polygon",
        api_chain="matic",
        chain_id=137,
        rpc_url="https://polygon-rpc.com",
        payment_token_address="0x7ceB23fD6bC0adD59E62ac25578270cFf1b9f619",
        native_symbol="MATIC",
        wrapped_symbol="WMATIC",
    ),
    "base": ChainSettings(
        name="base",
        api_chain="base",
        chain_id=8453,
        rpc_url="https://mainnet.base.org",
        payment_token_address="0x4200000000000000000000000000000000000006",
        native_symbol="ETH",
        wrapped_symbol="WETH",
    ),
    "hyperevm": ChainSettings(
        name="hyperevm",
        api_chain="hyperevm",
        chain_id=999,
        rpc_url="https://rpc.hyperliquid.xyz/evm",
        payment_token_address="0x5555555555555555555555555555555555555555",
        native_symbol="HYPE",
        wrapped_symbol="WHYPE",
    ),
    "sepolia": ChainSettings(
        name="sepolia",
        api_chain="sepolia",
        chain_id=11155111,
        rpc_url="https://sepolia.infura.io/v3/YOUR_INFURA_KEY",
        payment_token_address="0xfFf9976782d46CC05630D1f6eBAb18b2324d6B14",
        native_symbol="ETH",
        wrapped_symbol="WETH",
    ),
}
CHAIN_ALIASES = {"mainnet": "ethereum", "matic": "polygon"}


def _to_decimal(value: Any, field_name: str) -> Decimal:
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ConfigError(f"Bad decimal for {field_name}: {value}") from exc


def _to_bool(value: Any, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    text = str(value).strip().lower()
    if text in {"1", "true", "yes", "y", "on"}:
        return True
    if text in {"0", "false", "no", "n", "off"}:
        return False
    return default


def _to_ids(value: Any) -> Tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return tuple(x.strip() for x in value.split(",") if x.strip())
    if isinstance(value, Sequence) and not isinstance(value, (bytes, bytearray)):
        return tuple(str(x).strip() for x in value if str(x).strip())
    return ()


def _read_json(path: str) -> Dict[str, Any]:
    p = Path(path)
    if not p.exists():
        return {}
    with p.open("r", encoding="utf-8") as f:
        payload = json.load(f)
    if not isinstance(payload, dict):
        raise ConfigError(f"JSON root must be object: {path}")
    return payload


def _section(raw: Dict[str, Any], key: str) -> Dict[str, Any]:
    sec = raw.get(key)
    return sec if isinstance(sec, dict) else {}


def _require_env(name: str) -> str:
    value = os.getenv(name, "").strip()
    if not value:
        raise ConfigError(f"Missing required environment variable: {name}")
    return value


def _parse_chain(raw: Dict[str, Any]) -> ChainSettings:
    sec = _section(raw, "chain")
    name = str(os.getenv("CHAIN") or sec.get("name") or "ethereum").strip().lower()
    name = CHAIN_ALIASES.get(name, name)
    base = CHAIN_PRESETS.get(name)
    if base is None:
        raise ConfigError(f"Unknown chain: {name} (known: {', '.join(sorted(CHAIN_PRESETS))})")
    rpc_url = str(os.getenv("RPC_URL") or sec.get("rpc_url") or base.rpc_url).strip()
    return replace(
        base,
        rpc_url=rpc_url,
        payment_token_address=str(sec.get("payment_token_address", base.payment_token_address)),
    )


def _parse_policy(raw: Dict[str, Any]) -> StrategyPolicy:
    base = StrategyPolicy()
    sec = _section(raw, "strategy")
    return replace(
        base,
        max_offer_fraction_of_floor=_to_decimal(
            sec.get("max_offer_fraction_of_floor", base.max_offer_fraction_of_floor),
            "strategy.max_offer_fraction_of_floor",
        ),
        bid_increment=_to_decimal(sec.get("bid_increment", base.bid_increment), "strategy.bid_increment"),
        undercut_amount=_to_decimal(
            sec.get("undercut_amount", base.undercut_amount), "strategy.undercut_amount"
        ),
        offer_duration_seconds=max(60, int(sec.get("offer_duration_seconds", base.offer_duration_seconds))),
        sniper_threshold_fraction=_to_decimal(
            sec.get("sniper_threshold_fraction", base.sniper_threshold_fraction),
            "strategy.sniper_threshold_fraction",
        ),
        harvest_undercut_amount=_to_decimal(
            sec.get("harvest_undercut_amount", base.harvest_undercut_amount),
            "strategy.harvest_undercut_amount",
        ),
        use_second_best_strategy=_to_bool(
            sec.get("use_second_best_strategy"), base.use_second_best_strategy
        ),
    )


def _parse_runtime(raw: Dict[str, Any]) -> RuntimeSettings:
    base = RuntimeSettings()
    sec = _section(raw, "runtime")
    return replace(
        base,
        dry_run=_to_bool(sec.get("dry_run"), base.dry_run),
        poll_interval=max(1.0, float(sec.get("poll_interval", base.poll_interval))),
        request_timeout=max(1.0, float(sec.get("request_timeout", base.request_timeout))),
        call_timeout=max(5.0, float(sec.get("call_timeout", base.call_timeout))),
        offers_lookup_limit=max(1, min(100, int(sec.get("offers_lookup_limit", base.offers_lookup_limit)))),
        default_listing_expiry_sec=max(
            600, int(sec.get("default_listing_expiry_sec", base.default_listing_expiry_sec))
        ),
    )


def _parse_volume(raw: Dict[str, Any]) -> VolumeSettings:
    base = VolumeSettings()
    sec = _section(raw, "volume")
    return replace(
        base,
        purchase_cooldown_sec=max(0.0, float(sec.get("purchase_cooldown_sec", base.purchase_cooldown_sec))),
        inventory_cap=max(0, int(sec.get("inventory_cap", base.inventory_cap))),
        floor_tolerance=_to_decimal(sec.get("floor_tolerance", base.floor_tolerance), "volume.floor_tolerance"),
        relist_markup=_to_decimal(sec.get("relist_markup", base.relist_markup), "volume.relist_markup"),
        relist_expiry_sec=max(60, int(sec.get("relist_expiry_sec", base.relist_expiry_sec))),
        discovery_limit=max(1, min(100, int(sec.get("discovery_limit", base.discovery_limit)))),
        inventory_limit=max(1, min(200, int(sec.get("inventory_limit", base.inventory_limit)))),
        prune_sold_positions=_to_bool(sec.get("prune_sold_positions"), base.prune_sold_positions),
    )


def _parse_listing(raw: Dict[str, Any]) -> ListingSettings:
    base = ListingSettings()
    sec = _section(raw, "listing")
    return replace(
        base,
        inventory_limit=max(1, min(200, int(sec.get("inventory_limit", base.inventory_limit)))),
        listings_lookup_limit=max(1, min(50, int(sec.get("listings_lookup_limit", base.listings_lookup_limit)))),
        recently_listed_window_sec=max(
            0.0, float(sec.get("recently_listed_window_sec", base.recently_listed_window_sec))
        ),
        recently_purchased_window_sec=max(
            0.0, float(sec.get("recently_purchased_window_sec", base.recently_purchased_window_sec))
        ),
        max_attempts=max(1, int(sec.get("max_attempts", base.max_attempts))),
        retry_backoff_sec=max(0.0, float(sec.get("retry_backoff_sec", base.retry_backoff_sec))),
        volume_floor_markup=_to_decimal(
            sec.get("volume_floor_markup", base.volume_floor_markup), "listing.volume_floor_markup"
        ),
        volume_expiry_sec=max(60, int(sec.get("volume_expiry_sec", base.volume_expiry_sec))),
    )


def _parse_sniper(raw: Dict[str, Any]) -> SniperSettings:
    base = SniperSettings()
    sec = _section(raw, "sniper")
    return replace(base, scan_limit=max(1, min(200, int(sec.get("scan_limit", base.scan_limit)))))


def _parse_harvest(raw: Dict[str, Any]) -> HarvestSettings:
    base = HarvestSettings()
    sec = _section(raw, "harvest")
    return replace(
        base,
        reserved_token_ids=_to_ids(sec.get("reserved_token_ids")),
        min_price=_to_decimal(sec.get("min_price", base.min_price), "harvest.min_price"),
        inventory_limit=max(1, min(200, int(sec.get("inventory_limit", base.inventory_limit)))),
    )


def _parse_balance(raw: Dict[str, Any]) -> BalanceSettings:
    base = BalanceSettings()
    sec = _section(raw, "balance")
    return replace(
        base,
        wrap_buffer=_to_decimal(sec.get("wrap_buffer", base.wrap_buffer), "balance.wrap_buffer"),
        unwrap_gas_buffer=_to_decimal(
            sec.get("unwrap_gas_buffer", base.unwrap_gas_buffer), "balance.unwrap_gas_buffer"
        ),
    )


def _parse_toggles(raw: Dict[str, Any]) -> Toggles:
    base = Toggles()
    sec = _section(raw, "toggles")
    return Toggles(
        bidding=_to_bool(sec.get("bidding"), base.bidding),
        harvest=_to_bool(sec.get("harvest"), base.harvest),
        sniper=_to_bool(sec.get("sniper"), base.sniper),
        volume=_to_bool(sec.get("volume"), base.volume),
    )


def _parse_routes(raw: Dict[str, Any]) -> ApiRoutes:
    base = ApiRoutes()
    routes_raw = _section(_section(raw, "api"), "routes")
    return replace(
        base,
        **{
            key: str(value)
            for key, value in routes_raw.items()
            if key in base.__dataclass_fields__ and isinstance(value, str) and value.strip()
        },
    )


def _parse_telegram(raw: Dict[str, Any]) -> TelegramSettings:
    tg_raw = _section(raw, "telegram")

    token = str(tg_raw.get("token") or os.getenv("TELEGRAM_BOT_TOKEN", "")).strip()
    chat_ids_raw = tg_raw.get("chat_ids")
    if chat_ids_raw is None:
        chat_ids_raw = os.getenv("TELEGRAM_CHAT_IDS", "")
    chat_ids: List[int] = []
    if isinstance(chat_ids_raw, str):
        for part in chat_ids_raw.split(","):
            part = part.strip()
            if part:
                try:
                    chat_ids.append(int(part))
                except ValueError:
                    continue
    elif isinstance(chat_ids_raw, list):
        for item in chat_ids_raw:
            try:
                chat_ids.append(int(item))
            except (TypeError, ValueError):
                continue

    enabled_raw = tg_raw.get("enabled")
    if enabled_raw is None:
        enabled_raw = os.getenv("TELEGRAM_ENABLED")
    enabled = _to_bool(enabled_raw, False) and bool(token)
    return TelegramSettings(enabled=enabled, token=token, chat_ids=tuple(sorted(set(chat_ids))))


def load_app_config(
    *,
    config_file: str,
    state_db_path: str = "",
    api_base: str = "",
    live_mode: bool = False,
    collection_slug: Optional[str] = None,
) -> AppConfig:
    raw = _read_json(config_file)
    runtime = _parse_runtime(raw)
    if live_mode:
        runtime = replace(runtime, dry_run=False)

    collection = _section(raw, "collection")
    slug = str(
        collection_slug or os.getenv("COLLECTION_SLUG") or collection.get("slug") or ""
    ).strip()
    if not slug:
        raise ConfigError("Collection slug not set: use collection.slug or COLLECTION_SLUG")
    contract = str(
        os.getenv("COLLECTION_CONTRACT") or collection.get("contract_address") or ""
    ).strip()

    api_key = _require_env("OPENSEA_API_KEY")
    private_key = _require_env("WALLET_PRIVATE_KEY")

    base_from_file = str(_section(raw, "api").get("base", "")).strip()
    final_base = api_base.strip() or base_from_file or API_BASE_DEFAULT
    db_from_file = str(_section(raw, "storage").get("state_db_path", "")).strip()

    return AppConfig(
        collection_slug=slug,
        contract_address=contract,
        api_base=final_base,
        api_key=api_key,
        private_key=private_key,
        chain=_parse_chain(raw),
        routes=_parse_routes(raw),
        runtime=runtime,
        policy=_parse_policy(raw),
        volume=_parse_volume(raw),
        listing=_parse_listing(raw),
        sniper=_parse_sniper(raw),
        harvest=_parse_harvest(raw),
        balance=_parse_balance(raw),
        toggles=_parse_toggles(raw),
        state_db_path=state_db_path or db_from_file or STATE_DB_DEFAULT,
        telegram=_parse_telegram(raw),
        config_file=config_file,
    )
