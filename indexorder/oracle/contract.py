"""
On-chain oracle reader

Reads index data from the deployed hybrid oracle contract through
``eth_call``. Every read is bounded by ``timeout`` seconds.
"""

from __future__ import annotations

import asyncio
import logging
from typing import List

from eth_abi.exceptions import DecodingError
from eth_utils import to_checksum_address

from ..constants import (
    CONNECTION_TIMEOUT,
    FIRST_CUSTOM_INDEX_ID,
    GET_INDEX_VALUE_SIGNATURE,
    GET_ORACLE_ADDRESS_SIGNATURE,
    GET_ORACLE_TYPE_SIGNATURE,
    IS_VALID_INDEX_SIGNATURE,
)
from ..crypto.abi import decode_result, encode_function_call
from ..exceptions import NetworkError, OracleUnavailable, UnknownIndex
from ..rpc.client import EthRPCClient, RPCError
from .registry import PREDEFINED_INDICES, IndexRecord, IndexValue, OracleType, index_metadata

logger = logging.getLogger(__name__)


class ContractOracleReader:
    """``OracleSource`` backed by the oracle contract."""

    def __init__(self, rpc: EthRPCClient, address: str, timeout: float = CONNECTION_TIMEOUT):
        self.rpc = rpc
        self._address = to_checksum_address(address)
        self.timeout = timeout

    @property
    def address(self) -> str:
        return self._address

    async def _call(self, index_id: int, signature: str, return_types: List[str]) -> tuple:
        data = encode_function_call(signature, index_id)
        try:
            raw = await asyncio.wait_for(self.rpc.call(self._address, data), timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            raise OracleUnavailable(
                f"Oracle read {signature} for index {index_id} timed out after {self.timeout}s",
                details={"indexId": index_id},
            ) from exc
        except NetworkError as exc:
            raise OracleUnavailable(str(exc), details={"indexId": index_id}) from exc
        except RPCError as exc:
            if exc.is_revert:
                raise UnknownIndex(index_id) from exc
            raise OracleUnavailable(str(exc), details={"indexId": index_id}) from exc

        if not raw:
            raise OracleUnavailable(f"Oracle returned no data for {signature}", details={"indexId": index_id})
        try:
            return decode_result(return_types, raw)
        except DecodingError as exc:
            raise OracleUnavailable(
                f"Malformed oracle response for {signature}: {exc}", details={"indexId": index_id}
            ) from exc

    async def get_value(self, index_id: int) -> IndexValue:
        value, timestamp = await self._call(index_id, GET_INDEX_VALUE_SIGNATURE, ["uint256", "uint256"])
        return IndexValue(value, timestamp)

    async def is_valid_index(self, index_id: int) -> bool:
        (valid,) = await self._call(index_id, IS_VALID_INDEX_SIGNATURE, ["bool"])
        return valid

    async def get_oracle_type(self, index_id: int) -> OracleType:
        (oracle_type,) = await self._call(index_id, GET_ORACLE_TYPE_SIGNATURE, ["uint8"])
        return OracleType(oracle_type)

    async def get_oracle_address(self, index_id: int) -> str:
        (address,) = await self._call(index_id, GET_ORACLE_ADDRESS_SIGNATURE, ["address"])
        return to_checksum_address(address)

    async def get_index(self, index_id: int) -> IndexRecord:
        if not await self.is_valid_index(index_id):
            raise UnknownIndex(index_id)
        reading = await self.get_value(index_id)
        oracle_type = await self.get_oracle_type(index_id)
        feed_address = await self.get_oracle_address(index_id)
        meta = index_metadata(index_id)
        source_url = PREDEFINED_INDICES[index_id][2] if index_id in PREDEFINED_INDICES else ""
        return IndexRecord(
            id=index_id,
            value=reading.value,
            timestamp=reading.timestamp,
            source_url=source_url,
            is_active=True,
            oracle_type=oracle_type,
            feed_address=None if int(feed_address, 16) == 0 else feed_address,
            name=meta.name,
            symbol=meta.symbol,
            unit=meta.unit,
        )

    async def list_indices(self, max_custom: int = 32) -> List[IndexRecord]:
        """
        Predefined indices plus custom ids from 6 upwards until the first
        invalid one. Indices that fail to read are skipped.
        """
        records: List[IndexRecord] = []
        for index_id in range(FIRST_CUSTOM_INDEX_ID + max_custom):
            try:
                records.append(await self.get_index(index_id))
            except UnknownIndex:
                if index_id >= FIRST_CUSTOM_INDEX_ID:
                    break
            except OracleUnavailable as exc:
                logger.warning(f"Skipping index {index_id}: {exc.message}")
        return records
