"""Seaport 1.6 order components and their EIP-712 typed data.

Only the shapes this bot submits are covered: a fixed-price ERC721 listing
paid in the native asset, and a collection offer paid in the wrapped asset
whose criteria item comes from the marketplace's offer-build endpoint.
"""

from __future__ import annotations

import secrets
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from .strategy import decimal_to_wei, to_decimal


SEAPORT_ADDRESS = "0x0000000000000068F116a894984e2DAE9f3eD1ff"
SEAPORT_NAME = "Seaport"
SEAPORT_VERSION = "1.6"
OPENSEA_CONDUIT_KEY = "0x0000007b02230091a7ed01230072f7006a004d60a8d4e71d599b8104250f0000"
ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
ZERO_BYTES32 = "0x" + "00" * 32

ITEM_NATIVE = 0
ITEM_ERC20 = 1
ITEM_ERC721 = 2

ORDER_FULL_OPEN = 0
ORDER_FULL_RESTRICTED = 2

BASIS_POINTS = 10_000

EIP712_TYPES: Dict[str, List[Dict[str, str]]] = {
    "EIP712Domain": [
        {"name": "name", "type": "string"},
        {"name": "version", "type": "string"},
        {"name": "chainId", "type": "uint256"},
        {"name": "verifyingContract", "type": "address"},
    ],
    "OrderComponents": [
        {"name": "offerer", "type": "address"},
        {"name": "zone", "type": "address"},
        {"name": "offer", "type": "OfferItem[]"},
        {"name": "consideration", "type": "ConsiderationItem[]"},
        {"name": "orderType", "type": "uint8"},
        {"name": "startTime", "type": "uint256"},
        {"name": "endTime", "type": "uint256"},
        {"name": "zoneHash", "type": "bytes32"},
        {"name": "salt", "type": "uint256"},
        {"name": "conduitKey", "type": "bytes32"},
        {"name": "counter", "type": "uint256"},
    ],
    "OfferItem": [
        {"name": "itemType", "type": "uint8"},
        {"name": "token", "type": "address"},
        {"name": "identifierOrCriteria", "type": "uint256"},
        {"name": "startAmount", "type": "uint256"},
        {"name": "endAmount", "type": "uint256"},
    ],
    "ConsiderationItem": [
        {"name": "itemType", "type": "uint8"},
        {"name": "token", "type": "address"},
        {"name": "identifierOrCriteria", "type": "uint256"},
        {"name": "startAmount", "type": "uint256"},
        {"name": "endAmount", "type": "uint256"},
        {"name": "recipient", "type": "address"},
    ],
}

_UINT_FIELDS = ("itemType", "identifierOrCriteria", "startAmount", "endAmount")


def required_fees(collection: Dict[str, Any]) -> List[Tuple[str, int]]:
    """(recipient, basis points) for every required collection fee."""
    out: List[Tuple[str, int]] = []
    fees = collection.get("fees")
    if not isinstance(fees, list):
        return out
    for item in fees:
        if not isinstance(item, dict) or not item.get("required"):
            continue
        pct = to_decimal(item.get("fee"))
        recipient = str(item.get("recipient") or "").strip()
        if pct is None or pct <= 0 or not recipient:
            continue
        out.append((recipient, int(pct * 100)))
    return out


def _item(item_type: int, token: str, identifier: Any, amount: int) -> Dict[str, Any]:
    return {
        "itemType": item_type,
        "token": token,
        "identifierOrCriteria": str(identifier),
        "startAmount": str(amount),
        "endAmount": str(amount),
    }


def _fee_items(
    total_wei: int, fees: List[Tuple[str, int]], item_type: int, token: str
) -> Tuple[List[Dict[str, Any]], int]:
    items: List[Dict[str, Any]] = []
    paid = 0
    for recipient, bps in fees:
        amount = total_wei * bps // BASIS_POINTS
        if amount <= 0:
            continue
        items.append({**_item(item_type, token, 0, amount), "recipient": recipient})
        paid += amount
    return items, paid


def _base_components(
    *,
    offerer: str,
    start_ts: int,
    end_ts: int,
    counter: int,
    zone: str = ZERO_ADDRESS,
    zone_hash: str = ZERO_BYTES32,
    salt: Optional[int] = None,
) -> Dict[str, Any]:
    restricted = zone.lower() != ZERO_ADDRESS
    return {
        "offerer": offerer,
        "zone": zone,
        "orderType": ORDER_FULL_RESTRICTED if restricted else ORDER_FULL_OPEN,
        "startTime": str(start_ts),
        "endTime": str(end_ts),
        "zoneHash": zone_hash,
        "salt": str(salt if salt is not None else secrets.randbits(96)),
        "conduitKey": OPENSEA_CONDUIT_KEY,
        "counter": str(counter),
    }


def build_listing_components(
    *,
    offerer: str,
    token_address: str,
    token_id: str,
    price: Decimal,
    fees: List[Tuple[str, int]],
    start_ts: int,
    end_ts: int,
    counter: int,
    salt: Optional[int] = None,
) -> Dict[str, Any]:
    total_wei = decimal_to_wei(price)
    fee_items, fee_total = _fee_items(total_wei, fees, ITEM_NATIVE, ZERO_ADDRESS)
    seller = {**_item(ITEM_NATIVE, ZERO_ADDRESS, 0, total_wei - fee_total), "recipient": offerer}
    return {
        **_base_components(
            offerer=offerer, start_ts=start_ts, end_ts=end_ts, counter=counter, salt=salt
        ),
        "offer": [_item(ITEM_ERC721, token_address, token_id, 1)],
        "consideration": [seller, *fee_items],
        "totalOriginalConsiderationItems": 1 + len(fee_items),
    }


def build_offer_components(
    *,
    offerer: str,
    payment_token: str,
    amount: Decimal,
    build_response: Dict[str, Any],
    fees: List[Tuple[str, int]],
    start_ts: int,
    end_ts: int,
    counter: int,
    salt: Optional[int] = None,
) -> Dict[str, Any]:
    partial = build_response.get("partialParameters")
    if not isinstance(partial, dict):
        raise RuntimeError("offer build response is missing partialParameters")
    criteria = partial.get("consideration")
    if not isinstance(criteria, list) or not criteria:
        raise RuntimeError("offer build response has no consideration criteria")

    total_wei = decimal_to_wei(amount)
    wanted = []
    for raw in criteria:
        item = {
            "itemType": int(raw.get("itemType", 0)),
            "token": str(raw.get("token", "")),
            "identifierOrCriteria": str(raw.get("identifierOrCriteria", "0")),
            "startAmount": str(raw.get("startAmount", "1")),
            "endAmount": str(raw.get("endAmount", "1")),
            "recipient": offerer,
        }
        wanted.append(item)
    fee_items, _ = _fee_items(total_wei, fees, ITEM_ERC20, payment_token)
    return {
        **_base_components(
            offerer=offerer,
            start_ts=start_ts,
            end_ts=end_ts,
            counter=counter,
            zone=str(partial.get("zone") or ZERO_ADDRESS),
            zone_hash=str(partial.get("zoneHash") or ZERO_BYTES32),
            salt=salt,
        ),
        "offer": [_item(ITEM_ERC20, payment_token, 0, total_wei)],
        "consideration": [*wanted, *fee_items],
        "totalOriginalConsiderationItems": len(wanted) + len(fee_items),
    }


def _typed_items(items: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    out = []
    for item in items:
        typed = dict(item)
        for key in _UINT_FIELDS:
            typed[key] = int(typed[key])
        out.append(typed)
    return out


def typed_data(components: Dict[str, Any], chain_id: int) -> Dict[str, Any]:
    message = {
        "offerer": components["offerer"],
        "zone": components["zone"],
        "offer": _typed_items(components["offer"]),
        "consideration": _typed_items(components["consideration"]),
        "orderType": int(components["orderType"]),
        "startTime": int(components["startTime"]),
        "endTime": int(components["endTime"]),
        "zoneHash": components["zoneHash"],
        "salt": int(components["salt"]),
        "conduitKey": components["conduitKey"],
        "counter": int(components["counter"]),
    }
    return {
        "types": EIP712_TYPES,
        "primaryType": "OrderComponents",
        "domain": {
            "name": SEAPORT_NAME,
            "version": SEAPORT_VERSION,
            "chainId": int(chain_id),
            "verifyingContract": SEAPORT_ADDRESS,
        },
        "message": message,
    }
