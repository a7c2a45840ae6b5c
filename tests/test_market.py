import asyncio
import time
from decimal import Decimal

import pytest

from src.services.opensea.config_loader import CHAIN_PRESETS
from src.services.opensea.market import BlockingCaller, OpenSeaMarket
from src.services.opensea.models import NftListing, RuntimeSettings
from src.services.opensea.wallet import Wallet


ME = "0x1111111111111111111111111111111111111111"
NFT = "0x3333333333333333333333333333333333333333"


class StubClient:
    def __init__(self):
        self.posted = []
        self.fulfillment = {"fulfillment_data": {"transaction": {"function": "x", "to": "0x", "value": 0}}}

    def fetch_collection(self, slug):
        return {"fees": [{"fee": 1, "recipient": "0x2222222222222222222222222222222222222222", "required": True}]}

    def fetch_collection_stats(self, slug):
        return {"total": {"floor_price": 0.8}}

    def fetch_collection_listings(self, slug, limit):
        return [{"order_hash": "l"}]

    def fetch_collection_offers(self, slug, limit):
        return [{"order_hash": "o", "price": {"value": "500000000000000000", "decimals": 18}}]

    def build_collection_offer(self, **kwargs):
        return {
            "partialParameters": {
                "consideration": [{"itemType": 4, "token": NFT, "identifierOrCriteria": "0"}],
                "zone": "0x0000000000000000000000000000000000000000",
                "zoneHash": "0x" + "00" * 32,
            }
        }

    def post_collection_offer(self, **kwargs):
        self.posted.append(kwargs)
        return {"order_hash": "0xoffer"}

    def post_listing(self, **kwargs):
        self.posted.append(kwargs)
        return {"order": {"order_hash": "0xlisting"}}

    def fetch_fulfillment_data(self, **kwargs):
        return self.fulfillment


class StubWallet:
    address = ME

    def __init__(self):
        self.approvals = []
        self.fulfilled = []

    def ensure_payment_allowance(self, amount):
        self.approvals.append(("erc20", amount))

    def ensure_collection_approval(self, contract):
        self.approvals.append(("erc721", contract))

    def seaport_counter(self):
        return 0

    def sign_typed_data(self, typed):
        return "0xsig"

    def fulfill(self, transaction):
        self.fulfilled.append(transaction)
        return "0xtx"


def _market():
    client, wallet = StubClient(), StubWallet()
    market = OpenSeaMarket(
        client=client,
        wallet=wallet,
        chain=CHAIN_PRESETS["ethereum"],
        runtime=RuntimeSettings(),
    )
    return market, client, wallet


def test_floor_and_offers_are_normalized():
    market, _, _ = _market()
    assert market.get_collection_floor("apes") == Decimal("0.8")
    offers = market.get_collection_offers("apes", 10)
    assert offers[0].price == Decimal("0.5")


def test_orders_by_side_validates_side():
    market, _, _ = _market()
    assert market.get_orders_by_side("apes", "listing", 5) == [{"order_hash": "l"}]
    with pytest.raises(ValueError):
        market.get_orders_by_side("apes", "sideways", 5)


def test_collection_offer_flow_returns_hash():
    market, client, wallet = _market()
    order_hash = market.create_collection_offer("apes", Decimal("0.5"), 2_000_000_000)
    assert order_hash == "0xoffer"
    assert wallet.approvals == [("erc20", Decimal("0.5"))]
    posted = client.posted[0]
    assert posted["signature"] == "0xsig"
    assert posted["parameters"]["endTime"] == "2000000000"
    assert len(posted["parameters"]["consideration"]) == 2


def test_listing_without_expiry_uses_default():
    market, client, wallet = _market()
    order_hash = market.create_listing(NFT, "7", Decimal("1"), None, "apes")
    assert order_hash == "0xlisting"
    params = client.posted[0]["parameters"]
    span = int(params["endTime"]) - int(params["startTime"])
    assert span == RuntimeSettings().default_listing_expiry_sec
    assert wallet.approvals == [("erc721", NFT)]


def test_fulfill_requires_transaction():
    market, client, wallet = _market()
    item = NftListing(
        order_hash="0xh",
        price=Decimal("1"),
        maker="0xs",
        token_address=NFT,
        token_id="1",
        expiration_ts=None,
        protocol_address="",
    )
    assert market.fulfill_order(item) == "0xtx"
    client.fulfillment = {"fulfillment_data": {}}
    with pytest.raises(RuntimeError):
        market.fulfill_order(item)


def test_wallet_rejects_unknown_fulfillment_function():
    wallet = Wallet(
        rpc_url="http://127.0.0.1:8545",
        private_key="0x" + "11" * 32,
        chain_id=1,
        payment_token_address=CHAIN_PRESETS["ethereum"].payment_token_address,
    )
    with pytest.raises(RuntimeError, match="unsupported fulfillment function"):
        wallet.fulfill({"function": "fulfillAdvancedOrder(...)", "input_data": {}})


@pytest.mark.asyncio
async def test_blocking_caller_times_out():
    call = BlockingCaller(0.05)
    with pytest.raises(asyncio.TimeoutError):
        await call(time.sleep, 0.5)
