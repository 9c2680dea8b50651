"""
Chain query backed by an EVM JSON-RPC node.

Token balances come from the ERC-20 `balanceOf` of the asset's contract;
transaction receipts are reported as success, failed or not_found.
"""

import logging
from typing import Any, Dict, Optional

import requests
from web3 import Web3
from web3.exceptions import TransactionNotFound, Web3Exception

from assetgate.addresses import checksum_address
from assetgate.collaborators import ChainQuery
from assetgate.errors import InvalidInput, Unavailable

from .util import is_hex

logger = logging.getLogger(__name__)

ERC20_BALANCE_OF_ABI = [
    {
        "constant": True,
        "inputs": [{"name": "_owner", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"name": "balance", "type": "uint256"}],
        "type": "function",
    }
]

RPC_ERRORS = (requests.RequestException, Web3Exception, OSError, ValueError)


class Web3ChainQuery(ChainQuery):

    def __init__(self, rpc_url: str, timeout: float = 30, w3: Optional[Web3] = None):
        self.rpc_url = rpc_url
        self.w3 = w3 or Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": timeout}))

    def get_balance(self, asset_id: str, address: str) -> int:
        contract = self.w3.eth.contract(address=checksum_address(asset_id), abi=ERC20_BALANCE_OF_ABI)
        try:
            balance = contract.functions.balanceOf(checksum_address(address)).call()
        except RPC_ERRORS as e:
            logger.error("balanceOf failed for %s: %s", asset_id, e)
            raise Unavailable("chain node unavailable") from e
        return int(balance)

    def verify_tx_receipt(self, tx_hash: str) -> Dict[str, Any]:
        if not tx_hash.startswith("0x") or not is_hex(tx_hash[2:], 64):
            raise InvalidInput("must be a 0x-prefixed 32-byte hex hash", "tx_hash")
        try:
            receipt = self.w3.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound:
            return {"tx_hash": tx_hash, "status": "not_found", "block_number": None}
        except RPC_ERRORS as e:
            logger.error("get_transaction_receipt failed for %s: %s", tx_hash, e)
            raise Unavailable("chain node unavailable") from e
        return {
            "tx_hash": tx_hash,
            "status": "success" if receipt["status"] == 1 else "failed",
            "block_number": receipt["blockNumber"],
        }
