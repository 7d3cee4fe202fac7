import os
import enum
import logging
from typing import (
    TYPE_CHECKING,
    Awaitable,
    Callable,
    List,
    Optional,
    Tuple,
)

from .common import (
    ConvergenceState,
    DeployedContracts,
    RunnerConfig,
    SignerLocks,
    run_blocking,
)
from .cosmos_client import CosmosClient
from .deployer import ContractDeployment, SubprocessContractDeployer
from .error import BridgeTestError, ProvisioningError
from .eth_client import EthClient
from .funding import fund_validators
from .keys import ValidatorKeys, eth_address, provision
from .registration import register_eth_addresses
from .wait import run_convergence, wait_for_cosmos_online
from .workers import (
    RelayerLoop,
    SubprocessRelayer,
    WorkerContext,
    WorkerGroup,
    spawn_workers,
)

if TYPE_CHECKING:
    import asyncio


class Phase(enum.Enum):
    PROVISION_KEYS = 'provision keys'
    AWAIT_CHAIN = 'await chain'
    REGISTER_ADDRESSES = 'register addresses'
    DEPLOY_CONTRACTS = 'deploy contracts'
    FUND_WORKERS = 'fund workers'
    SPAWN_WORKERS = 'spawn workers'
    CONVERGE = 'converge'
    DONE = 'done'


def parse_private_key(hex_key: str) -> bytes:
    if hex_key.startswith('0x'):
        hex_key = hex_key[2:]
    return bytes.fromhex(hex_key)


class TestRunner:
    """Brings up the bridge one phase at a time and then waits for the
    orchestrators to relay a validator set update to Ethereum.

    Any failure before the convergence phase ends the run; nothing that
    already happened on either chain is undone.
    """

    # Tell pytest to ignore this class (produces warnings otherwise)
    __test__ = False

    def __init__(
        self,
        config: RunnerConfig,
        *,
        cosmos: CosmosClient,
        eth: EthClient,
        deployment: ContractDeployment,
        relayer: RelayerLoop,
        random_bytes: Callable[[int], bytes] = os.urandom,
    ) -> None:
        self.config = config
        self.cosmos = cosmos
        self.eth = eth
        self.deployment = deployment
        self.relayer = relayer
        self.random_bytes = random_bytes
        self.miner_key = parse_private_key(config.miner_private_key)
        self.miner_address = eth_address(self.miner_key)
        self.locks = SignerLocks()
        self.workers = WorkerGroup()

        self.phase = Phase.PROVISION_KEYS
        self.completed_phases: List[Phase] = []
        self.validators: List[ValidatorKeys] = []
        self.contracts: Optional[DeployedContracts] = None
        self.worker_tasks: List['asyncio.Task[None]'] = []
        self.state: Optional[ConvergenceState] = None

    def __repr__(self) -> str:
        return '<TestRunner(phase={})>'.format(self.phase.name)

    def phases(self) -> List[Tuple[Phase, Callable[[], Awaitable[None]]]]:
        return [
            (Phase.PROVISION_KEYS, self.provision_keys),
            (Phase.AWAIT_CHAIN, self.await_chain),
            (Phase.REGISTER_ADDRESSES, self.register_addresses),
            (Phase.DEPLOY_CONTRACTS, self.deploy_contracts),
            (Phase.FUND_WORKERS, self.fund_workers),
            (Phase.SPAWN_WORKERS, self.spawn_workers),
            (Phase.CONVERGE, self.converge),
        ]

    async def run(self) -> ConvergenceState:
        logging.info("Starting Peggy test-runner")
        for phase, step in self.phases():
            self.phase = phase
            logging.info("PHASE %s", phase.value)
            try:
                await step()
            except BridgeTestError:
                logging.error("PHASE %s failed", phase.value)
                raise
            self.completed_phases.append(phase)
        self.phase = Phase.DONE

        failures = self.workers.failures()
        if failures:
            logging.warning("%d orchestrators failed while the test was running: %s", len(failures), ', '.join(failures))
        assert self.state is not None
        return self.state

    async def provision_keys(self) -> None:
        path = self.config.validator_phrases_file
        self.validators = await run_blocking(provision, path, self.random_bytes)
        if not self.validators:
            raise ProvisioningError(path, 'no validator phrases')

    async def await_chain(self) -> None:
        await wait_for_cosmos_online(self.cosmos, self.config.readiness_interval, self.config.readiness_deadline)

    async def register_addresses(self) -> None:
        # Validators have to set up their Eth addresses out of band before the
        # orchestrators start; the chain does not require it yet.
        await register_eth_addresses(self.cosmos, self.validators, self.config.fee, self.locks)

    async def deploy_contracts(self) -> None:
        self.contracts = await self.deployment.deploy()

    async def fund_workers(self) -> None:
        await fund_validators(self.eth, self.validators, self.config.funding_amount, self.miner_key, self.config.timeout, self.locks)

    async def spawn_workers(self) -> None:
        assert self.contracts is not None
        contexts = [
            WorkerContext(
                keys=keys,
                cosmos=self.cosmos,
                eth=self.eth,
                contracts=self.contracts,
                fee_denom=self.config.test_token_name,
                timeout=self.config.timeout,
            )
            for keys in self.validators
        ]
        self.worker_tasks = spawn_workers(self.workers, self.relayer, contexts)

    async def converge(self) -> None:
        assert self.contracts is not None
        self.state = await run_convergence(
            cosmos=self.cosmos,
            eth=self.eth,
            contracts=self.contracts,
            requester=self.validators[0],
            caller=self.miner_address,
            fee=self.config.fee,
            interval=self.config.poll_interval,
            deadline=self.config.convergence_deadline,
            locks=self.locks,
        )


def make_runner(config: RunnerConfig) -> TestRunner:
    return TestRunner(
        config,
        cosmos=CosmosClient(config.cosmos_node, config.timeout, gas=config.gas),
        eth=EthClient(config.eth_node, config.timeout),
        deployment=SubprocessContractDeployer(config),
        relayer=SubprocessRelayer(config.relayer_command),
    )


async def run_from_config(config: RunnerConfig) -> ConvergenceState:
    return await make_runner(config).run()
