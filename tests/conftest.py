import time
import asyncio
import logging
import threading
import contextlib
from random import Random
from typing import (
    Any,
    Callable,
    Dict,
    Generator,
    List,
    Optional,
    Set,
    Tuple,
)

import pytest
import requests
from _pytest.config.argparsing import Parser

from peggy_test_runner.common import Fee, RunnerConfig
from peggy_test_runner.cosmos_client import TxResponse
from peggy_test_runner.deployer import parse_deployer_output
from peggy_test_runner.keys import cosmos_address, eth_address


# Silence unwanted noise in logs produced at the DEBUG level
logging.getLogger('urllib3.connectionpool').setLevel(logging.WARNING)
logging.getLogger('web3').setLevel(logging.WARNING)
logging.getLogger('asyncio').setLevel(logging.WARNING)


VALIDATOR_PHRASES = [
    "abandon abandon abandon abandon abandon abandon abandon abandon abandon abandon abandon about",
    "legal winner thank year wave sausage worth useful legal winner thank yellow",
    "letter advice cage absurd amount doctor acoustic avoid letter advice cage above",
    "zoo zoo zoo zoo zoo zoo zoo zoo zoo zoo zoo wrong",
]

PEGGY_ADDRESS = "0x8858eeb3dfffa017d4bce9801d340d36cf895ccf"
ERC20_ADDRESS = "0x7580bfe88dd3d07947908fae12d95872a260f2d8"

DEPLOYER_OUTPUT = """\
Starting Peggy contract deploy
Peggy deployed at Address -  {}
ERC20 deployed at Address - {}
""".format(PEGGY_ADDRESS, ERC20_ADDRESS)


def pytest_addoption(parser: Parser) -> None:
    parser.addoption("--random-seed", type=int, action="store", default=None, help="seed for the random numbers generator used in tests")
    parser.addoption("--live", action="store_true", default=False, help="run the tests that need a running chain pair")
    parser.addoption("--cosmos-node", action="store", default="http://localhost:1317", help="Cosmos REST endpoint for live tests")
    parser.addoption("--eth-node", action="store", default="http://localhost:8545", help="Ethereum JSON-RPC endpoint for live tests")
    parser.addoption("--validator-phrases", action="store", default="/validator-phrases", help="validator mnemonics file for live tests")


def pytest_collection_modifyitems(config: Any, items: List[Any]) -> None:
    if config.getoption("--live"):
        return
    skip_live = pytest.mark.skip(reason="needs --live")
    for item in items:
        if "live" in item.keywords:
            item.add_marker(skip_live)


@pytest.fixture(scope='session')
def random_generator(request: Any) -> Generator[Random, None, None]:
    random_seed = request.config.getoption("--random-seed")
    if random_seed is None:
        random_seed = int(time.time())
    logging.critical("Using tests random number generator seed: %d", random_seed)
    yield Random(random_seed)


def make_phrases_file_content(phrases: List[str]) -> str:
    # Same shape as the key generation tool's output, one block per validator
    lines = []
    for phrase in phrases:
        lines.append("**Important** write this mnemonic phrase in a safe place.")
        lines.append("It is the only way to recover your account if you ever forget your password.")
        lines.append("")
        lines.append(phrase)
        lines.append("")
    return "\n".join(lines)


@pytest.fixture
def phrases_file(tmp_path: Any) -> str:
    path = tmp_path / "validator-phrases"
    path.write_text(make_phrases_file_content(VALIDATOR_PHRASES[:3]))
    return str(path)


class OverlapRecorder:
    """Counts how many recorded calls were in flight at the same time."""

    def __init__(self, hold: float = 0.01) -> None:
        self.hold = hold
        self.calls: List[Tuple[str, str]] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self._lock = threading.Lock()

    @contextlib.contextmanager
    def call(self, name: str, subject: str) -> Generator[None, None, None]:
        with self._lock:
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
            self.calls.append((name, subject))
        try:
            time.sleep(self.hold)
            yield
        finally:
            with self._lock:
                self.in_flight -= 1


class FakeCosmos:
    def __init__(
        self,
        heights: Optional[List[Optional[int]]] = None,
        recorder: Optional[OverlapRecorder] = None,
        failing_validators: Optional[Set[str]] = None,
        valset_request_code: int = 0,
        events: Optional[List[Tuple[Any, ...]]] = None,
    ) -> None:
        self.url = "http://cosmos.test:1317"
        self.heights = list(heights) if heights is not None else [1, 2]
        self.recorder = recorder if recorder is not None else OverlapRecorder(hold=0)
        self.failing_validators = failing_validators or set()
        self.valset_request_code = valset_request_code
        self.events = events if events is not None else []
        self.registered: List[Tuple[str, str]] = []
        self.valset_requests: List[Tuple[str, Fee]] = []
        self.valset_requested = threading.Event()
        self.height_reads = 0

    def latest_block_height(self) -> int:
        self.height_reads += 1
        height = self.heights.pop(0) if len(self.heights) > 1 else self.heights[0]
        if height is None:
            raise requests.ConnectionError("connection refused")
        return height

    def update_eth_address(self, cosmos_key: bytes, eth_key: bytes, fee: Fee) -> TxResponse:
        validator = cosmos_address(cosmos_key)
        with self.recorder.call("update_eth_address", validator):
            self.events.append(("register", validator))
            if validator in self.failing_validators:
                return TxResponse(txhash="FF", height=10, code=4, raw_log="unauthorized")
            self.registered.append((validator, eth_address(eth_key)))
            return TxResponse(txhash="AB", height=10, code=0, raw_log="[]")

    def send_valset_request(self, cosmos_key: bytes, fee: Fee) -> TxResponse:
        requester = cosmos_address(cosmos_key)
        self.events.append(("valset_request", requester))
        self.valset_requests.append((requester, fee))
        self.valset_requested.set()
        return TxResponse(txhash="CD", height=11, code=self.valset_request_code, raw_log="")


class FakeEth:
    def __init__(
        self,
        nonces: Optional[List[int]] = None,
        recorder: Optional[OverlapRecorder] = None,
        failing_recipients: Optional[Set[str]] = None,
        reverting_recipients: Optional[Set[str]] = None,
        events: Optional[List[Tuple[Any, ...]]] = None,
    ) -> None:
        self.url = "http://eth.test:8545"
        # the last scripted nonce keeps being returned once the script runs out
        self.nonces = list(nonces) if nonces is not None else [5]
        self.nonce = self.nonces[0]
        self.recorder = recorder if recorder is not None else OverlapRecorder(hold=0)
        self.failing_recipients = failing_recipients or set()
        self.reverting_recipients = reverting_recipients or set()
        self.events = events if events is not None else []
        self.transfers: List[Tuple[str, int, str]] = []
        self.nonce_reads: List[int] = []
        self._sent: Dict[bytes, str] = {}
        self._lock = threading.Lock()

    def get_balance(self, address: str) -> int:
        return 10 ** 24

    def send_value(self, to: str, amount: int, private_key: bytes) -> bytes:
        with self.recorder.call("send_value", to):
            if to in self.failing_recipients:
                raise ValueError("insufficient funds for gas * price + value")
            tx_hash = len(self.transfers).to_bytes(32, 'big')
            self.transfers.append((to, amount, eth_address(private_key)))
            self._sent[tx_hash] = to
            return tx_hash

    def wait_for_transaction(self, tx_hash: bytes, timeout: float) -> Dict[str, Any]:
        with self.recorder.call("wait_for_transaction", self._sent[tx_hash]):
            status = 0 if self._sent[tx_hash] in self.reverting_recipients else 1
            return {"transactionHash": tx_hash, "status": status}

    def set_nonce(self, nonce: int) -> None:
        with self._lock:
            self.nonces = [nonce]
            self.nonce = nonce

    def get_valset_nonce(self, peggy_address: str, caller: str) -> int:
        with self._lock:
            if len(self.nonces) > 1:
                self.nonce = self.nonces.pop(0)
            else:
                self.nonce = self.nonces[0]
            self.nonce_reads.append(self.nonce)
            self.events.append(("nonce", self.nonce))
            return self.nonce


class FakeDeployment:
    def __init__(self, output: str = DEPLOYER_OUTPUT) -> None:
        self.output = output
        self.calls = 0

    async def deploy(self) -> Any:
        self.calls += 1
        return parse_deployer_output(self.output)


class FakeRelayer:
    """Stands in for the orchestrators: once a valset request shows up on the
    Cosmos side, one of them relays it by bumping the nonce on the Eth side.
    """

    def __init__(self, on_request: Optional[Callable[[Any], None]] = None, fail: bool = False) -> None:
        self.on_request = on_request
        self.fail = fail
        self.started: List[str] = []
        self._forever = asyncio.Event()

    async def __call__(self, worker: Any) -> None:
        self.started.append(worker.keys.cosmos_address)
        if self.fail:
            raise RuntimeError("orchestrator crashed")
        if self.on_request is not None:
            while not worker.cosmos.valset_requested.is_set():
                await asyncio.sleep(0.001)
            self.on_request(worker)
        await self._forever.wait()


def make_config(phrases_file: str, **overrides: Any) -> RunnerConfig:
    options: Dict[str, Any] = dict(
        validator_phrases_file=phrases_file,
        poll_interval=0,
        readiness_interval=0,
        timeout=1,
    )
    options.update(overrides)
    return RunnerConfig(**options)
