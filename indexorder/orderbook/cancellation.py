"""
Maker-side order cancellation

Cancelling is an on-chain ``cancelOrder(makerTraits, orderHash)`` call on
the limit order protocol, sent by the maker. Three ways to get there:

  - the caller supplies a raw transaction already signed in their wallet
  - the caller supplies a private key and the transaction is signed here
  - neither: the unsigned transaction is returned for wallet signing
"""

import logging
from typing import Any, Awaitable, Dict, Optional

from eth_account import Account
from eth_utils import to_checksum_address

from ..constants import CANCEL_ORDER_SIGNATURE, GAS_LIMIT_MULTIPLIER_DEN, GAS_LIMIT_MULTIPLIER_NUM
from ..crypto.abi import encode_function_call, normalize_address
from ..crypto.hashing import to_bytes, to_hex
from ..exceptions import NetworkError, OrderNotFound, Unauthorized, ValidationError
from ..rpc.client import RPCError
from .records import order_data

logger = logging.getLogger(__name__)


def cancel_calldata(maker_traits: int, order_hash: str) -> bytes:
    return encode_function_call(CANCEL_ORDER_SIGNATURE, maker_traits, to_bytes(order_hash))


class OrderCanceller:

    def __init__(self, orderbook, rpc, chain_id: int, protocol_address: str):
        self.orderbook = orderbook
        self.rpc = rpc
        self.chain_id = chain_id
        self.protocol_address = to_checksum_address(protocol_address)

    async def _node(self, pending: Awaitable[Any]) -> Any:
        try:
            return await pending
        except RPCError as exc:
            raise NetworkError(f"Node refused cancellation call: {exc.message}", details=exc.to_dict()) from exc

    async def _fetch(self, order_hash: str) -> Dict[str, Any]:
        record = await self.orderbook.get_order_by_hash(order_hash)
        if not record or not order_data(record).get("maker"):
            raise OrderNotFound(
                "Order not found or already cancelled",
                details={"orderHash": order_hash},
            )
        return order_data(record)

    async def can_cancel(self, order_hash: str, wallet: str) -> Dict[str, Any]:
        wallet = normalize_address(wallet, "walletAddress")
        try:
            data = await self._fetch(order_hash)
        except OrderNotFound:
            return {"canCancel": False, "reason": "Order not found", "details": None}

        if data["maker"].lower() != wallet.lower():
            return {
                "canCancel": False,
                "reason": "Only order maker can cancel",
                "maker": data["maker"],
                "wallet": wallet,
            }
        return {"canCancel": True, "reason": "Order is cancellable", "order": data}

    async def _authorized(self, order_hash: str, wallet: str) -> Dict[str, Any]:
        data = await self._fetch(order_hash)
        if data["maker"].lower() != wallet.lower():
            raise Unauthorized(
                f"Only the order maker can cancel this order. Maker: {data['maker']}, Your address: {wallet}",
                details={"maker": data["maker"], "wallet": wallet},
            )
        return data

    async def cancel(
        self,
        order_hash: str,
        wallet: Optional[str] = None,
        signed_transaction: Optional[str] = None,
        private_key: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Raises:
            OrderNotFound: the order book does not know *order_hash*
            Unauthorized: the wallet is not the order's maker
            TransactionReverted: the cancellation would revert
        """
        account = None
        if private_key:
            try:
                account = Account.from_key(private_key)
            except (ValueError, TypeError) as exc:
                raise ValidationError("Invalid private key") from exc
            wallet = account.address
        if not wallet:
            raise ValidationError("walletAddress or privateKey is required", details={"field": "walletAddress"})
        wallet = normalize_address(wallet, "walletAddress")

        data = await self._authorized(order_hash, wallet)
        maker_traits = int(str(data["makerTraits"]), 0)
        tx = {
            "from": wallet,
            "to": self.protocol_address,
            "data": to_hex(cancel_calldata(maker_traits, order_hash)),
            "value": "0x0",
        }

        if signed_transaction:
            tx_hash = await self._node(self.rpc.send_raw_transaction(signed_transaction))
            logger.info(f"Cancellation of {order_hash} broadcast: {tx_hash}")
            return {"success": True, "orderHash": order_hash, "transactionHash": tx_hash, "status": "submitted"}

        gas_estimate = await self._node(self.rpc.estimate_gas(tx))
        gas_limit = gas_estimate * GAS_LIMIT_MULTIPLIER_NUM // GAS_LIMIT_MULTIPLIER_DEN

        if account is None:
            return {
                "success": True,
                "orderHash": order_hash,
                "status": "unsigned",
                "transaction": {**tx, "gas": hex(gas_limit), "chainId": self.chain_id},
            }

        nonce = await self._node(self.rpc.get_transaction_count(wallet))
        gas_price = await self._node(self.rpc.gas_price())
        signed = account.sign_transaction({
            "to": self.protocol_address,
            "data": tx["data"],
            "value": 0,
            "gas": gas_limit,
            "gasPrice": gas_price,
            "nonce": nonce,
            "chainId": self.chain_id,
        })
        tx_hash = await self._node(self.rpc.send_raw_transaction(to_hex(bytes(signed.raw_transaction))))
        logger.info(f"Cancellation of {order_hash} sent from {wallet}: {tx_hash}")
        return {
            "success": True,
            "orderHash": order_hash,
            "transactionHash": tx_hash,
            "gasLimit": gas_limit,
            "status": "submitted",
        }
