import os
import shlex
import asyncio
import argparse
import functools
import dataclasses
from typing import (
    Any,
    Callable,
    Dict,
    List,
    Optional,
    Sequence,
    TypeVar,
)

T = TypeVar("T")

# Private key of the account that receives the block rewards in the Ethereum
# test genesis, so it always holds enough ETH to pay for deployments and funding.
MINER_PRIVATE_KEY = "0xb1bab011e03a9862664706fc3bbaa1b16651528e5f0e7fbfcbfdd8be302a13e7"


@dataclasses.dataclass(frozen=True)
class Fee:
    denom: str
    amount: int

    def to_amino(self) -> Dict[str, str]:
        return {"amount": str(self.amount), "denom": self.denom}


@dataclasses.dataclass(frozen=True)
class DeployedContracts:
    peggy_address: str
    erc20_address: str


@dataclasses.dataclass
class ConvergenceState:
    nonce_before: int
    nonce_current: int
    ticks: int = 0

    @property
    def converged(self) -> bool:
        return self.nonce_current != self.nonce_before


@dataclasses.dataclass
class RunnerConfig:
    cosmos_node: str = "http://localhost:1317"
    eth_node: str = "http://localhost:8545"
    peggy_id: str = "foo"
    miner_private_key: str = MINER_PRIVATE_KEY
    validator_phrases_file: str = "/validator-phrases"
    test_token_name: str = "footoken"
    fee_amount: int = 1
    funding_amount: int = 1_000_000_000_000_000_000
    timeout: float = 30
    poll_interval: float = 10
    readiness_interval: float = 1
    readiness_deadline: Optional[float] = None
    convergence_deadline: Optional[float] = None
    deployer_command: List[str] = dataclasses.field(default_factory=lambda: ["npx", "ts-node", "/peggy/solidity/contract-deployer.ts"])
    deployer_cwd: str = "/peggy/solidity/"
    peggy_contract_artifact: str = "/peggy/solidity/artifacts/Peggy.json"
    erc20_contract_artifact: str = "/peggy/solidity/artifacts/TestERC20.json"
    relayer_command: List[str] = dataclasses.field(default_factory=lambda: ["orchestrator"])
    gas: int = 200000

    @property
    def fee(self) -> Fee:
        return Fee(denom=self.test_token_name, amount=self.fee_amount)

    @classmethod
    def from_args(cls, argv: Optional[Sequence[str]] = None) -> 'RunnerConfig':
        defaults = cls()
        env = os.environ.get
        parser = argparse.ArgumentParser(
            prog="peggy-test-runner",
            description="Bring up the Peggy bridge and wait for the orchestrators to relay a validator set update",
            formatter_class=argparse.ArgumentDefaultsHelpFormatter,
        )
        parser.add_argument("--cosmos-node", default=env("PEGGY_COSMOS_NODE", defaults.cosmos_node), help="Cosmos REST endpoint")
        parser.add_argument("--eth-node", default=env("PEGGY_ETH_NODE", defaults.eth_node), help="Ethereum JSON-RPC endpoint")
        parser.add_argument("--peggy-id", default=env("PEGGY_ID", defaults.peggy_id), help="identifier shared with the contract deployer")
        parser.add_argument("--miner-private-key", default=env("PEGGY_MINER_PRIVATE_KEY", defaults.miner_private_key), help="funded Ethereum key")
        parser.add_argument("--validator-phrases", dest="validator_phrases_file", default=env("PEGGY_VALIDATOR_PHRASES", defaults.validator_phrases_file), help="file holding the validator mnemonics")
        parser.add_argument("--token-name", dest="test_token_name", default=env("PEGGY_TOKEN_NAME", defaults.test_token_name), help="fee denomination")
        parser.add_argument("--fee-amount", type=int, default=int(env("PEGGY_FEE_AMOUNT", defaults.fee_amount)))
        parser.add_argument("--funding-amount", type=int, default=int(env("PEGGY_FUNDING_AMOUNT", defaults.funding_amount)), help="wei sent to every orchestrator")
        parser.add_argument("--timeout", type=float, default=float(env("PEGGY_TIMEOUT", defaults.timeout)), help="timeout in seconds for a single chain call")
        parser.add_argument("--poll-interval", type=float, default=float(env("PEGGY_POLL_INTERVAL", defaults.poll_interval)), help="seconds between valset nonce checks")
        parser.add_argument("--readiness-interval", type=float, default=defaults.readiness_interval, help="seconds between Cosmos status checks")
        parser.add_argument("--readiness-deadline", type=float, default=None, help="give up waiting for Cosmos after this many seconds")
        parser.add_argument("--convergence-deadline", type=float, default=None, help="give up waiting for the valset update after this many seconds")
        parser.add_argument("--deployer-command", default=env("PEGGY_DEPLOYER_COMMAND", shlex.join(defaults.deployer_command)))
        parser.add_argument("--deployer-cwd", default=env("PEGGY_DEPLOYER_CWD", defaults.deployer_cwd))
        parser.add_argument("--peggy-contract", dest="peggy_contract_artifact", default=defaults.peggy_contract_artifact)
        parser.add_argument("--erc20-contract", dest="erc20_contract_artifact", default=defaults.erc20_contract_artifact)
        parser.add_argument("--relayer-command", default=env("PEGGY_RELAYER_COMMAND", shlex.join(defaults.relayer_command)))
        parser.add_argument("--gas", type=int, default=defaults.gas)
        parser.add_argument("--debug", action="store_true", help="log at DEBUG level")
        args = parser.parse_args(argv)

        options = vars(args)
        options.pop("debug")
        options["deployer_command"] = shlex.split(options["deployer_command"])
        options["relayer_command"] = shlex.split(options["relayer_command"])
        return cls(**options)


class SignerLocks:
    """One transaction in flight per signer.

    Cosmos and Ethereum accounts both order transactions by a per-account
    sequence number, so two concurrent submissions from the same key race for
    the same sequence.
    """

    def __init__(self) -> None:
        self._locks: Dict[str, asyncio.Lock] = {}

    def for_signer(self, signer: str) -> asyncio.Lock:
        lock = self._locks.get(signer)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[signer] = lock
        return lock


async def run_blocking(func: Callable[..., T], *args: Any) -> T:
    """Runs a blocking client call on the loop's executor."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, functools.partial(func, *args))
