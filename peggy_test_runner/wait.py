import asyncio
import logging
from typing import TYPE_CHECKING, Optional
import typing_extensions

import requests

from .common import (
    ConvergenceState,
    DeployedContracts,
    Fee,
    SignerLocks,
    run_blocking,
)
from .error import (
    HttpRequestException,
    ValsetRequestError,
    WaitTimeoutError,
)

if TYPE_CHECKING:
    # pylint: disable=cyclic-import
    from .cosmos_client import CosmosClient
    from .eth_client import EthClient
    from .keys import ValidatorKeys


class PredicateProtocol(typing_extensions.Protocol):
    def __str__(self) -> str:
        # pylint: disable=pointless-statement
        ...

    async def is_satisfied(self) -> bool:
        # pylint: disable=pointless-statement, no-self-use
        ...


class CosmosChainAdvancing:
    """Satisfied once the chain answers and has produced a block since the
    first answer, so a node stuck on its genesis height does not count.
    """

    def __init__(self, cosmos: 'CosmosClient') -> None:
        self.cosmos = cosmos
        self.first_height: Optional[int] = None
        self.last_height: Optional[int] = None

    def __str__(self) -> str:
        return '<{}({!r})>'.format(self.__class__.__name__, self.cosmos)

    async def is_satisfied(self) -> bool:
        try:
            height = await run_blocking(self.cosmos.latest_block_height)
        except (requests.RequestException, HttpRequestException, KeyError, ValueError) as e:
            logging.debug("Cosmos node not answering yet: %s", e)
            return False
        self.last_height = height
        if self.first_height is None:
            self.first_height = height
            return False
        return height > self.first_height


class ValsetNonceChanged:
    def __init__(self, eth: 'EthClient', peggy_address: str, caller: str, state: ConvergenceState) -> None:
        self.eth = eth
        self.peggy_address = peggy_address
        self.caller = caller
        self.state = state

    def __str__(self) -> str:
        args = ', '.join(repr(a) for a in (self.peggy_address, self.state.nonce_before))
        return '<{}({})>'.format(self.__class__.__name__, args)

    async def is_satisfied(self) -> bool:
        self.state.nonce_current = await run_blocking(self.eth.get_valset_nonce, self.peggy_address, self.caller)
        self.state.ticks += 1
        if not self.state.converged:
            logging.info("Validator set is not yet updated, waiting")
        return self.state.converged


async def wait_until(predicate: PredicateProtocol, interval: float, deadline: Optional[float] = None) -> None:
    """Polls the predicate every interval seconds. Without a deadline this
    waits for as long as it takes.
    """
    logging.info("AWAITING {}".format(predicate))
    loop = asyncio.get_running_loop()
    started = loop.time()
    while True:
        if await predicate.is_satisfied():
            logging.info("SATISFIED {}".format(predicate))
            return
        if deadline is not None and loop.time() - started >= deadline:
            logging.info("TIMEOUT %s", predicate)
            raise WaitTimeoutError(predicate, deadline)
        await asyncio.sleep(interval)


async def wait_for_cosmos_online(cosmos: 'CosmosClient', interval: float, deadline: Optional[float] = None) -> None:
    logging.info("Waiting for Cosmos chain to come online")
    predicate = CosmosChainAdvancing(cosmos)
    await wait_until(predicate, interval, deadline)
    logging.info("Cosmos chain is producing blocks at height %s", predicate.last_height)


async def run_convergence(
    *,
    cosmos: 'CosmosClient',
    eth: 'EthClient',
    contracts: DeployedContracts,
    requester: 'ValidatorKeys',
    caller: str,
    fee: Fee,
    interval: float,
    deadline: Optional[float] = None,
    locks: Optional[SignerLocks] = None,
) -> ConvergenceState:
    """Requests a new validator set and waits for the orchestrators to relay
    it to the Peggy contract.

    The request is sent as the first validator because it holds fee tokens.
    """
    locks = locks if locks is not None else SignerLocks()
    nonce_before = await run_blocking(eth.get_valset_nonce, contracts.peggy_address, caller)
    state = ConvergenceState(nonce_before=nonce_before, nonce_current=nonce_before)

    logging.info("Sending in valset request")
    async with locks.for_signer(requester.cosmos_address):
        try:
            response = await run_blocking(cosmos.send_valset_request, requester.cosmos_key, fee)
        except (requests.RequestException, HttpRequestException) as e:
            raise ValsetRequestError(requester.cosmos_address, str(e)) from e
    if not response.ok:
        raise ValsetRequestError(requester.cosmos_address, response.raw_log)

    logging.info("Our starting valset is %d, waiting for orchestrators to update it", nonce_before)
    await wait_until(ValsetNonceChanged(eth, contracts.peggy_address, caller, state), interval, deadline)
    logging.info("Validator set successfully updated! Nonce %d -> %d", state.nonce_before, state.nonce_current)
    return state
