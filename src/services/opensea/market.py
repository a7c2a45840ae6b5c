from __future__ import annotations

import asyncio
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Tuple

from .client import OpenSeaClient
from .models import ChainSettings, CollectionOffer, NftListing, OwnedNft, RuntimeSettings
from .seaport import (
    SEAPORT_ADDRESS,
    build_listing_components,
    build_offer_components,
    required_fees,
    typed_data,
)
from .strategy import (
    infer_order_hash,
    now_ts,
    parse_collection_offer,
    parse_floor_price,
    parse_listing,
    parse_owned_nft,
)
from .wallet import Wallet


ORDER_SIDES = ("listing", "offer")


class BlockingCaller:
    """Runs a synchronous collaborator call in a worker thread with a deadline."""

    def __init__(self, timeout: float) -> None:
        self.timeout = timeout

    async def __call__(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        return await asyncio.wait_for(
            asyncio.to_thread(fn, *args, **kwargs),
            timeout=self.timeout,
        )


class OpenSeaMarket:
    def __init__(
        self,
        *,
        client: OpenSeaClient,
        wallet: Wallet,
        chain: ChainSettings,
        runtime: RuntimeSettings,
    ) -> None:
        self.client = client
        self.wallet = wallet
        self.chain = chain
        self.runtime = runtime
        self._fees: Dict[str, List[Tuple[str, int]]] = {}

    def get_address(self) -> str:
        return self.wallet.address

    def _collection_fees(self, slug: str) -> List[Tuple[str, int]]:
        if slug not in self._fees:
            self._fees[slug] = required_fees(self.client.fetch_collection(slug))
        return self._fees[slug]

    def get_collection_floor(self, slug: str) -> Decimal:
        floor = parse_floor_price(self.client.fetch_collection_stats(slug))
        if floor is None:
            raise RuntimeError(f"no floor price for {slug}")
        return floor

    def get_collection_offers(self, slug: str, limit: int = 10) -> List[CollectionOffer]:
        rows = self.client.fetch_collection_offers(slug, limit)
        return [parse_collection_offer(x) for x in rows]

    def get_nfts_by_account(self, address: str, limit: int = 50) -> List[OwnedNft]:
        rows = self.client.fetch_account_nfts(address, limit)
        return [parse_owned_nft(x) for x in rows]

    def get_nfts_by_collection(self, slug: str, limit: int = 50) -> List[OwnedNft]:
        rows = self.client.fetch_collection_nfts(slug, limit)
        return [parse_owned_nft(x) for x in rows]

    def get_nft_listings(self, contract: str, token_id: str, limit: int = 10) -> List[NftListing]:
        rows = self.client.fetch_nft_listings(contract, token_id, limit)
        return [parse_listing(x) for x in rows]

    def get_orders_by_side(self, slug: str, side: str, limit: int = 100) -> List[Dict[str, Any]]:
        if side == "listing":
            return self.client.fetch_collection_listings(slug, limit)
        if side == "offer":
            return self.client.fetch_collection_offers(slug, limit)
        raise ValueError(f"side must be one of {ORDER_SIDES}, got {side!r}")

    def create_collection_offer(self, slug: str, amount: Decimal, expiration_ts: int) -> str:
        offerer = self.wallet.address
        self.wallet.ensure_payment_allowance(amount)
        build = self.client.build_collection_offer(
            offerer=offerer,
            slug=slug,
            protocol_address=SEAPORT_ADDRESS,
        )
        components = build_offer_components(
            offerer=offerer,
            payment_token=self.chain.payment_token_address,
            amount=amount,
            build_response=build,
            fees=self._collection_fees(slug),
            start_ts=now_ts(),
            end_ts=int(expiration_ts),
            counter=self.wallet.seaport_counter(),
        )
        signature = self.wallet.sign_typed_data(typed_data(components, self.chain.chain_id))
        response = self.client.post_collection_offer(
            parameters=components,
            signature=signature,
            slug=slug,
            protocol_address=SEAPORT_ADDRESS,
        )
        order_hash = infer_order_hash(response)
        if not order_hash:
            raise RuntimeError("offer accepted without an order hash")
        return order_hash

    def create_listing(
        self,
        contract: str,
        token_id: str,
        amount: Decimal,
        expiration_ts: Optional[int] = None,
        slug: str = "",
    ) -> str:
        offerer = self.wallet.address
        self.wallet.ensure_collection_approval(contract)
        start = now_ts()
        end = int(expiration_ts) if expiration_ts else start + self.runtime.default_listing_expiry_sec
        components = build_listing_components(
            offerer=offerer,
            token_address=contract,
            token_id=str(token_id),
            price=amount,
            fees=self._collection_fees(slug) if slug else [],
            start_ts=start,
            end_ts=end,
            counter=self.wallet.seaport_counter(),
        )
        signature = self.wallet.sign_typed_data(typed_data(components, self.chain.chain_id))
        response = self.client.post_listing(
            parameters=components,
            signature=signature,
            protocol_address=SEAPORT_ADDRESS,
        )
        order_hash = infer_order_hash(response)
        if not order_hash:
            raise RuntimeError("listing accepted without an order hash")
        return order_hash

    def cancel_order(self, order_hash: str) -> bool:
        response = self.client.cancel_order(order_hash=order_hash, protocol_address=SEAPORT_ADDRESS)
        return "errors" not in response

    def fulfill_order(self, listing: NftListing) -> str:
        data = self.client.fetch_fulfillment_data(
            order_hash=listing.order_hash,
            protocol_address=listing.protocol_address or SEAPORT_ADDRESS,
            fulfiller=self.wallet.address,
        )
        fulfillment = data.get("fulfillment_data")
        transaction = fulfillment.get("transaction") if isinstance(fulfillment, dict) else None
        if not isinstance(transaction, dict):
            raise RuntimeError("fulfillment response has no transaction")
        return self.wallet.fulfill(transaction)

    def wrap(self, amount: Decimal) -> str:
        return self.wallet.deposit(amount)

    def unwrap(self, amount: Decimal) -> str:
        return self.wallet.withdraw(amount)

    def get_native_balance(self, address: str) -> Decimal:
        return self.wallet.native_balance(address)

    def get_payment_asset_balance(self, address: str) -> Decimal:
        return self.wallet.payment_balance(address)
