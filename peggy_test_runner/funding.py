import logging
from typing import TYPE_CHECKING, Any, Dict, List, Sequence

import requests
from web3.exceptions import TimeExhausted, Web3Exception

from .common import (
    SignerLocks,
    run_blocking,
)
from .error import TransferError
from .keys import ValidatorKeys, eth_address

if TYPE_CHECKING:
    from .eth_client import EthClient


async def fund_address(eth: 'EthClient', recipient: str, amount: int, funder_key: bytes, timeout: float, locks: SignerLocks) -> Dict[str, Any]:
    funder = eth_address(funder_key)
    async with locks.for_signer(funder):
        try:
            balance = await run_blocking(eth.get_balance, funder)
            logging.info("Sending orchestrator %d wei to pay for fees, miner has %d wei", amount, balance)
        except (requests.RequestException, Web3Exception) as e:
            logging.warning("Could not read the balance of %s: %s", funder, e)
        try:
            tx_hash = await run_blocking(eth.send_value, recipient, amount, funder_key)
            receipt = await run_blocking(eth.wait_for_transaction, tx_hash, timeout)
        except TimeExhausted as e:
            raise TransferError(recipient, 'not mined within {}s'.format(timeout)) from e
        except (requests.RequestException, Web3Exception, ValueError) as e:
            raise TransferError(recipient, str(e)) from e
    if receipt.get('status', 1) != 1:
        raise TransferError(recipient, 'transaction {} reverted'.format(tx_hash.hex()))
    return receipt


async def fund_validators(eth: 'EthClient', validators: Sequence[ValidatorKeys], amount: int, funder_key: bytes, timeout: float, locks: SignerLocks) -> List[Dict[str, Any]]:
    """Before the orchestrators start, send each of them some ETH so they can
    pay for relaying. Each transfer is mined before the next one is sent.
    """
    result = []
    for keys in validators:
        result.append(await fund_address(eth, keys.eth_address, amount, funder_key, timeout, locks))
    return result
