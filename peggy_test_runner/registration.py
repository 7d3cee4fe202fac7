import logging
from typing import TYPE_CHECKING, List, Sequence

import requests

from .common import (
    Fee,
    SignerLocks,
    run_blocking,
)
from .error import (
    HttpRequestException,
    RegistrationError,
)
from .keys import ValidatorKeys

if TYPE_CHECKING:
    from .cosmos_client import CosmosClient, TxResponse


async def register_eth_address(cosmos: 'CosmosClient', keys: ValidatorKeys, fee: Fee, locks: SignerLocks) -> 'TxResponse':
    logging.info("Signing and submitting Eth address %s for validator %s", keys.eth_address, keys.cosmos_address)
    async with locks.for_signer(keys.cosmos_address):
        try:
            response = await run_blocking(cosmos.update_eth_address, keys.cosmos_key, keys.eth_key, fee)
        except (requests.RequestException, HttpRequestException) as e:
            raise RegistrationError(keys.cosmos_address, str(e)) from e
    if not response.ok:
        raise RegistrationError(keys.cosmos_address, 'code {}: {}'.format(response.code, response.raw_log))
    logging.debug("Eth address of %s committed in %s at height %d", keys.cosmos_address, response.txhash, response.height)
    return response


async def register_eth_addresses(cosmos: 'CosmosClient', validators: Sequence[ValidatorKeys], fee: Fee, locks: SignerLocks) -> List['TxResponse']:
    """Registers every validator's Eth address, one committed transaction at a
    time and in validator order. The first failure aborts the rest.
    """
    result = []
    for keys in validators:
        result.append(await register_eth_address(cosmos, keys, fee, locks))
    return result
