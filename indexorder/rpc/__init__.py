"""
JSON-RPC transport for the oracle contract and the settlement chain.
"""

from .client import EthRPCClient, RPCError, RPCErrorCode

__all__ = ["EthRPCClient", "RPCError", "RPCErrorCode"]
