from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, List, Optional

from eth_account import Account
from web3 import Web3
from web3.middleware import ExtraDataToPOAMiddleware

from .seaport import SEAPORT_ADDRESS
from .strategy import decimal_to_wei, wei_to_decimal


OPENSEA_CONDUIT_ADDRESS = "0x1E0049783F008A0085193E00003D00cd54003c71"
BASIC_ORDER_FUNCTION = "fulfillBasicOrder_efficient_6GL6yc"

WRAPPED_ABI: List[Dict[str, Any]] = [
    {
        "name": "balanceOf",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "owner", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "name": "allowance",
        "type": "function",
        "stateMutability": "view",
        "inputs": [
            {"name": "owner", "type": "address"},
            {"name": "spender", "type": "address"},
        ],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "name": "approve",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "spender", "type": "address"},
            {"name": "amount", "type": "uint256"},
        ],
        "outputs": [{"name": "", "type": "bool"}],
    },
    {
        "name": "deposit",
        "type": "function",
        "stateMutability": "payable",
        "inputs": [],
        "outputs": [],
    },
    {
        "name": "withdraw",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [{"name": "wad", "type": "uint256"}],
        "outputs": [],
    },
]

ERC721_APPROVAL_ABI: List[Dict[str, Any]] = [
    {
        "name": "isApprovedForAll",
        "type": "function",
        "stateMutability": "view",
        "inputs": [
            {"name": "owner", "type": "address"},
            {"name": "operator", "type": "address"},
        ],
        "outputs": [{"name": "", "type": "bool"}],
    },
    {
        "name": "setApprovalForAll",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "operator", "type": "address"},
            {"name": "approved", "type": "bool"},
        ],
        "outputs": [],
    },
]

SEAPORT_ABI: List[Dict[str, Any]] = [
    {
        "name": "getCounter",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "offerer", "type": "address"}],
        "outputs": [{"name": "counter", "type": "uint256"}],
    },
    {
        "name": BASIC_ORDER_FUNCTION,
        "type": "function",
        "stateMutability": "payable",
        "inputs": [
            {
                "name": "parameters",
                "type": "tuple",
                "components": [
                    {"name": "considerationToken", "type": "address"},
                    {"name": "considerationIdentifier", "type": "uint256"},
                    {"name": "considerationAmount", "type": "uint256"},
                    {"name": "offerer", "type": "address"},
                    {"name": "zone", "type": "address"},
                    {"name": "offerToken", "type": "address"},
                    {"name": "offerIdentifier", "type": "uint256"},
                    {"name": "offerAmount", "type": "uint256"},
                    {"name": "basicOrderType", "type": "uint8"},
                    {"name": "startTime", "type": "uint256"},
                    {"name": "endTime", "type": "uint256"},
                    {"name": "zoneHash", "type": "bytes32"},
                    {"name": "salt", "type": "uint256"},
                    {"name": "offererConduitKey", "type": "bytes32"},
                    {"name": "fulfillerConduitKey", "type": "bytes32"},
                    {"name": "totalOriginalAdditionalRecipients", "type": "uint256"},
                    {
                        "name": "additionalRecipients",
                        "type": "tuple[]",
                        "components": [
                            {"name": "amount", "type": "uint256"},
                            {"name": "recipient", "type": "address"},
                        ],
                    },
                    {"name": "signature", "type": "bytes"},
                ],
            }
        ],
        "outputs": [{"name": "fulfilled", "type": "bool"}],
    },
]

MAX_UINT256 = 2**256 - 1


def _bytes(value: Any) -> bytes:
    text = str(value or "0x")
    return Web3.to_bytes(hexstr=text)


def basic_order_args(params: Dict[str, Any]) -> tuple:
    """Positional tuple for ``BasicOrderParameters`` from fulfillment JSON."""
    recipients = [
        (int(x["amount"]), Web3.to_checksum_address(x["recipient"]))
        for x in params.get("additionalRecipients") or []
    ]
    return (
        Web3.to_checksum_address(params["considerationToken"]),
        int(params["considerationIdentifier"]),
        int(params["considerationAmount"]),
        Web3.to_checksum_address(params["offerer"]),
        Web3.to_checksum_address(params["zone"]),
        Web3.to_checksum_address(params["offerToken"]),
        int(params["offerIdentifier"]),
        int(params["offerAmount"]),
        int(params["basicOrderType"]),
        int(params["startTime"]),
        int(params["endTime"]),
        _bytes(params["zoneHash"]),
        int(params["salt"]),
        _bytes(params["offererConduitKey"]),
        _bytes(params["fulfillerConduitKey"]),
        int(params["totalOriginalAdditionalRecipients"]),
        recipients,
        _bytes(params["signature"]),
    )


class Wallet:
    def __init__(
        self,
        *,
        rpc_url: str,
        private_key: str,
        chain_id: int,
        payment_token_address: str,
        timeout: float = 15.0,
        receipt_timeout: float = 180.0,
    ) -> None:
        self.w3 = Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": timeout}))
        self.w3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)
        self.account = Account.from_key(private_key)
        self.chain_id = int(chain_id)
        self.receipt_timeout = receipt_timeout
        self.payment_token = self.w3.eth.contract(
            address=Web3.to_checksum_address(payment_token_address), abi=WRAPPED_ABI
        )
        self.seaport = self.w3.eth.contract(
            address=Web3.to_checksum_address(SEAPORT_ADDRESS), abi=SEAPORT_ABI
        )

    @property
    def address(self) -> str:
        return self.account.address

    def native_balance(self, address: Optional[str] = None) -> Decimal:
        owner = Web3.to_checksum_address(address or self.address)
        return wei_to_decimal(self.w3.eth.get_balance(owner)) or Decimal("0")

    def payment_balance(self, address: Optional[str] = None) -> Decimal:
        owner = Web3.to_checksum_address(address or self.address)
        raw = self.payment_token.functions.balanceOf(owner).call()
        return wei_to_decimal(raw) or Decimal("0")

    def seaport_counter(self) -> int:
        return int(self.seaport.functions.getCounter(self.address).call())

    def sign_typed_data(self, typed: Dict[str, Any]) -> str:
        signed = Account.sign_typed_data(self.account.key, full_message=typed)
        return Web3.to_hex(signed.signature)

    def _send(self, call: Any, value: int = 0) -> str:
        tx = call.build_transaction(
            {
                "from": self.address,
                "value": int(value),
                "nonce": self.w3.eth.get_transaction_count(self.address, "pending"),
                "chainId": self.chain_id,
            }
        )
        signed = self.account.sign_transaction(tx)
        tx_hash = self.w3.eth.send_raw_transaction(signed.raw_transaction)
        receipt = self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.receipt_timeout)
        hex_hash = Web3.to_hex(tx_hash)
        if receipt.get("status") != 1:
            raise RuntimeError(f"transaction reverted: {hex_hash}")
        return hex_hash

    def deposit(self, amount: Decimal) -> str:
        return self._send(self.payment_token.functions.deposit(), value=decimal_to_wei(amount))

    def withdraw(self, amount: Decimal) -> str:
        return self._send(self.payment_token.functions.withdraw(decimal_to_wei(amount)))

    def ensure_payment_allowance(self, amount: Decimal) -> Optional[str]:
        conduit = Web3.to_checksum_address(OPENSEA_CONDUIT_ADDRESS)
        current = self.payment_token.functions.allowance(self.address, conduit).call()
        if int(current) >= decimal_to_wei(amount):
            return None
        return self._send(self.payment_token.functions.approve(conduit, MAX_UINT256))

    def ensure_collection_approval(self, contract_address: str) -> Optional[str]:
        nft = self.w3.eth.contract(
            address=Web3.to_checksum_address(contract_address), abi=ERC721_APPROVAL_ABI
        )
        conduit = Web3.to_checksum_address(OPENSEA_CONDUIT_ADDRESS)
        if nft.functions.isApprovedForAll(self.address, conduit).call():
            return None
        return self._send(nft.functions.setApprovalForAll(conduit, True))

    def fulfill(self, transaction: Dict[str, Any]) -> str:
        function = str(transaction.get("function") or "")
        name = function.split("(", 1)[0]
        if name != BASIC_ORDER_FUNCTION:
            raise RuntimeError(f"unsupported fulfillment function: {function or '?'}")
        target = str(transaction.get("to") or "")
        if target and target.lower() != SEAPORT_ADDRESS.lower():
            raise RuntimeError(f"unexpected fulfillment target: {target}")
        input_data = transaction.get("input_data")
        params = input_data.get("parameters") if isinstance(input_data, dict) else None
        if not isinstance(params, dict):
            raise RuntimeError("fulfillment data has no order parameters")
        call = self.seaport.functions.fulfillBasicOrder_efficient_6GL6yc(basic_order_args(params))
        return self._send(call, value=int(transaction.get("value") or 0))
