from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .models import (
    LISTING_PRICE_STEP,
    OFFER_PRICE_STEP,
    CollectionOffer,
    NftListing,
    OwnedNft,
    StrategyPolicy,
)


WEI_DECIMALS = 18


def to_decimal(value: Any) -> Optional[Decimal]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None


def round4(value: Decimal) -> Decimal:
    return value.quantize(OFFER_PRICE_STEP, rounding=ROUND_HALF_UP)


def round6(value: Decimal) -> Decimal:
    return value.quantize(LISTING_PRICE_STEP, rounding=ROUND_HALF_UP)


def wei_to_decimal(value: Any, decimals: Any = WEI_DECIMALS) -> Optional[Decimal]:
    raw = to_decimal(value)
    if raw is None:
        return None
    try:
        places = int(decimals)
    except (TypeError, ValueError):
        places = WEI_DECIMALS
    return raw / (Decimal(10) ** places)


def decimal_to_wei(value: Decimal, decimals: int = WEI_DECIMALS) -> int:
    return int((value * (Decimal(10) ** decimals)).to_integral_value(rounding=ROUND_HALF_UP))


def now_ts() -> int:
    return int(datetime.now(tz=timezone.utc).timestamp())


def parse_unix_ts(value: Any) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, (int, float)):
        ts = int(value)
        if ts > 10_000_000_000:
            return int(ts / 1000)
        return ts
    text = str(value).strip()
    if not text:
        return None
    if text.isdigit():
        ts = int(text)
        if ts > 10_000_000_000:
            return int(ts / 1000)
        return ts
    try:
        dt = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp())


# Pricing


def price_offer(
    best_offer: Decimal,
    second_best_offer: Decimal,
    floor_price: Decimal,
    policy: StrategyPolicy,
) -> Optional[Decimal]:
    """Collection bid that beats the current best (or second-best) offer.

    Returns ``None`` when the bid would exceed
    ``floor * max_offer_fraction_of_floor``; that ceiling applies in both
    strategy modes.
    """
    if policy.use_second_best_strategy and second_best_offer > 0:
        target = second_best_offer + policy.bid_increment
    else:
        target = best_offer + policy.bid_increment

    ceiling = floor_price * policy.max_offer_fraction_of_floor
    if target > ceiling:
        return None
    return round4(target)


def price_listing(floor_price: Decimal, policy: StrategyPolicy) -> Decimal:
    return floor_price - policy.undercut_amount


def harvest_price(floor_price: Decimal, undercut: Decimal, min_price: Decimal) -> Decimal:
    return max(min_price, floor_price - undercut)


def volume_relist_price(buy_price: Decimal, markup: Decimal) -> Decimal:
    return round6(buy_price * (Decimal("1") + markup))


def volume_inventory_price(floor_price: Decimal, markup: Decimal) -> Decimal:
    return round6(floor_price * (Decimal("1") + markup))


def within_floor_tolerance(price: Decimal, floor_price: Decimal, tolerance: Decimal) -> bool:
    return price <= floor_price * (Decimal("1") + tolerance)


def select_best_offer(
    offers: List[CollectionOffer],
    account: str,
) -> Tuple[Decimal, bool]:
    """Per-item price of the top offer and whether ``account`` made it.

    Single-item offers are preferred; batch offers only count when no
    single-item offer exists.
    """
    if not offers:
        return Decimal("0"), False
    single = [x for x in offers if x.remaining_quantity == 1]
    target = single[0] if single else offers[0]
    quantity = max(1, target.remaining_quantity)
    price = target.price / Decimal(quantity)
    is_ours = bool(target.offerer) and target.offerer.lower() == account.lower()
    return price, is_ours


def second_best_price(offers: List[CollectionOffer]) -> Decimal:
    if len(offers) < 2:
        return Decimal("0")
    second = offers[1]
    return second.price / Decimal(max(1, second.remaining_quantity))


# Payload normalization


def _dig(data: Any, *path: Any) -> Any:
    cur = data
    for key in path:
        if isinstance(key, int):
            if not isinstance(cur, list) or len(cur) <= key:
                return None
            cur = cur[key]
            continue
        if not isinstance(cur, dict):
            return None
        cur = cur.get(key)
    return cur


def _address(value: Any) -> str:
    if isinstance(value, dict):
        value = value.get("address")
    if value is None:
        return ""
    return str(value).strip()


def _first_text(data: Dict[str, Any], keys: Iterable[str]) -> str:
    for key in keys:
        val = data.get(key)
        if val is not None:
            text = str(val).strip()
            if text:
                return text
    return ""


def parse_collection_offer(item: Dict[str, Any]) -> CollectionOffer:
    price_sec = item.get("price")
    price: Optional[Decimal] = None
    if isinstance(price_sec, dict):
        price = wei_to_decimal(price_sec.get("value"), price_sec.get("decimals", WEI_DECIMALS))
    if price is None:
        price = wei_to_decimal(item.get("current_price"))
    offerer = _address(_dig(item, "protocol_data", "parameters", "offerer")) or _address(
        item.get("maker")
    )
    try:
        quantity = int(item.get("remaining_quantity") or 1)
    except (TypeError, ValueError):
        quantity = 1
    return CollectionOffer(
        order_hash=_first_text(item, ("order_hash", "orderHash")),
        price=price or Decimal("0"),
        offerer=offerer,
        remaining_quantity=quantity,
        raw=item,
    )


def parse_owned_nft(item: Dict[str, Any]) -> OwnedNft:
    collection = item.get("collection")
    slug = collection.get("slug") if isinstance(collection, dict) else collection
    return OwnedNft(
        contract=_first_text(item, ("contract", "contract_address")),
        identifier=_first_text(item, ("identifier", "token_id")),
        collection_slug=str(slug or "").strip(),
        raw=item,
    )


def parse_listing(item: Dict[str, Any]) -> NftListing:
    price_sec = item.get("price")
    price: Optional[Decimal] = None
    if isinstance(price_sec, dict):
        current = price_sec.get("current")
        if isinstance(current, dict):
            price = wei_to_decimal(current.get("value"), current.get("decimals", WEI_DECIMALS))
    if price is None:
        price = wei_to_decimal(item.get("current_price"))

    params = _dig(item, "protocol_data", "parameters") or {}
    maker = (
        _address(item.get("maker"))
        or _address(item.get("offerer"))
        or _address(params.get("offerer") if isinstance(params, dict) else None)
    )
    offer_item = _dig(params, "offer", 0) or {}
    token_address = _address(offer_item.get("token")) if isinstance(offer_item, dict) else ""
    token_id = ""
    if isinstance(offer_item, dict) and offer_item.get("identifierOrCriteria") is not None:
        token_id = str(offer_item.get("identifierOrCriteria")).strip()

    expiration = parse_unix_ts(item.get("expiration_time"))
    if expiration is None and isinstance(params, dict):
        expiration = parse_unix_ts(params.get("endTime"))

    protocol_address = _first_text(item, ("protocol_address",))
    return NftListing(
        order_hash=_first_text(item, ("order_hash", "orderHash")),
        price=price,
        maker=maker,
        token_address=token_address,
        token_id=token_id,
        expiration_ts=expiration,
        protocol_address=protocol_address,
        raw=item,
    )


def parse_floor_price(payload: Dict[str, Any]) -> Optional[Decimal]:
    total = payload.get("total")
    if isinstance(total, dict):
        floor = to_decimal(total.get("floor_price"))
        if floor is not None:
            return floor
    return to_decimal(payload.get("floor_price"))


def infer_order_hash(payload: Dict[str, Any]) -> str:
    found = _first_text(payload, ("order_hash", "orderHash"))
    if found:
        return found
    for section_key in ("order", "offer", "listing", "result"):
        sec = payload.get(section_key)
        if isinstance(sec, dict):
            found = _first_text(sec, ("order_hash", "orderHash"))
            if found:
                return found
    return ""
