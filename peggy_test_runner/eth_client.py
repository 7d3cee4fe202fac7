import logging
from typing import Any, Dict

from eth_account import Account
from hexbytes import HexBytes
from web3 import Web3

ETH_TRANSFER_GAS = 21000

# Only the read side of the Peggy contract the runner needs
PEGGY_ABI = [
    {
        "inputs": [],
        "name": "state_lastValsetNonce",
        "outputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
]

logger = logging.getLogger("eth_client")


class EthClient:
    def __init__(self, url: str, timeout: float) -> None:
        self.url = url
        self.timeout = timeout
        self.web3 = Web3(Web3.HTTPProvider(url, request_kwargs={"timeout": timeout}))

    def __repr__(self) -> str:
        return '<EthClient(url={})>'.format(repr(self.url))

    def get_balance(self, address: str) -> int:
        return self.web3.eth.get_balance(Web3.to_checksum_address(address))

    def send_value(self, to: str, amount: int, private_key: bytes) -> HexBytes:
        sender = Account.from_key(private_key)
        tx = {
            "to": Web3.to_checksum_address(to),
            "value": amount,
            "gas": ETH_TRANSFER_GAS,
            "gasPrice": self.web3.eth.gas_price,
            "nonce": self.web3.eth.get_transaction_count(sender.address, "pending"),
            "chainId": self.web3.eth.chain_id,
            "data": b"",
        }
        signed = sender.sign_transaction(tx)
        tx_hash = self.web3.eth.send_raw_transaction(signed.raw_transaction)
        logger.debug("Sent %d wei from %s to %s in %s", amount, sender.address, to, tx_hash.hex())
        return tx_hash

    def wait_for_transaction(self, tx_hash: HexBytes, timeout: float) -> Dict[str, Any]:
        return dict(self.web3.eth.wait_for_transaction_receipt(tx_hash, timeout=timeout, poll_latency=0.5))

    def get_valset_nonce(self, peggy_address: str, caller: str) -> int:
        peggy = self.web3.eth.contract(address=Web3.to_checksum_address(peggy_address), abi=PEGGY_ABI)
        return int(peggy.functions.state_lastValsetNonce().call({"from": Web3.to_checksum_address(caller)}))
