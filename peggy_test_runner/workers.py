import asyncio
import logging
import dataclasses
from typing import TYPE_CHECKING, Awaitable, Dict, List, Optional, Sequence, Set
import typing_extensions

from .common import DeployedContracts
from .keys import ValidatorKeys

if TYPE_CHECKING:
    from .cosmos_client import CosmosClient
    from .eth_client import EthClient


@dataclasses.dataclass(frozen=True)
class WorkerContext:
    keys: ValidatorKeys
    cosmos: 'CosmosClient'
    eth: 'EthClient'
    contracts: DeployedContracts
    fee_denom: str
    timeout: float

    @property
    def name(self) -> str:
        return 'orchestrator-{}'.format(self.keys.cosmos_address)


class RelayerLoop(typing_extensions.Protocol):
    async def __call__(self, worker: WorkerContext) -> None:
        # pylint: disable=pointless-statement
        ...


class RelayerExitedError(Exception):
    def __init__(self, name: str, exit_code: int) -> None:
        super().__init__('{} exited with {}'.format(name, exit_code))
        self.name = name
        self.exit_code = exit_code


class SubprocessRelayer:
    """Runs one orchestrator binary per validator and forwards its output to
    the 'relayer' logger.
    """

    def __init__(self, command: Sequence[str]) -> None:
        self.command = list(command)
        self.logger = logging.getLogger('relayer')

    def arguments(self, worker: WorkerContext) -> List[str]:
        return [
            '--cosmos-private-key={}'.format(worker.keys.cosmos_key.hex()),
            '--ethereum-private-key={}'.format(worker.keys.eth_key.hex()),
            '--cosmos-legacy-rpc={}'.format(worker.cosmos.url),
            '--ethereum-rpc={}'.format(worker.eth.url),
            '--contract-address={}'.format(worker.contracts.peggy_address),
            '--fees={}'.format(worker.fee_denom),
            '--timeout={}'.format(worker.timeout),
        ]

    async def __call__(self, worker: WorkerContext) -> None:
        process = await asyncio.create_subprocess_exec(
            *self.command,
            *self.arguments(worker),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )
        assert process.stdout is not None
        try:
            async for line in process.stdout:
                self.logger.info('{}: {}'.format(worker.name, line.decode('utf-8', errors='replace').rstrip()))
            exit_code = await process.wait()
        finally:
            if process.returncode is None:
                process.kill()
        if exit_code != 0:
            raise RelayerExitedError(worker.name, exit_code)


class WorkerGroup:
    """Tasks spawned here run for the rest of the process and are never
    awaited by the runner, but their failures are kept so a harness can look.
    """

    def __init__(self) -> None:
        self.tasks: Set['asyncio.Task[None]'] = set()
        self._failures: Dict[str, BaseException] = {}
        self._finished: List[str] = []

    def spawn(self, name: str, coro: Awaitable[None]) -> 'asyncio.Task[None]':
        task = asyncio.ensure_future(coro)
        task.set_name(name)
        self.tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: 'asyncio.Task[None]') -> None:
        self.tasks.discard(task)
        if task.cancelled():
            return
        exception = task.exception()
        if exception is None:
            self._finished.append(task.get_name())
            logging.warning("Worker %s returned", task.get_name())
            return
        self._failures[task.get_name()] = exception
        logging.error("Worker %s failed: %r", task.get_name(), exception)

    def failures(self) -> Dict[str, BaseException]:
        return dict(self._failures)

    def finished(self) -> List[str]:
        return list(self._finished)

    def running(self) -> int:
        return len(self.tasks)

    async def cancel_all(self, timeout: Optional[float] = None) -> None:
        tasks = list(self.tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.wait(tasks, timeout=timeout)


def spawn_workers(group: WorkerGroup, relayer: RelayerLoop, workers: Sequence[WorkerContext]) -> List['asyncio.Task[None]']:
    result = []
    for worker in workers:
        logging.info("Spawning Orchestrator %s", worker.name)
        result.append(group.spawn(worker.name, relayer(worker)))
    return result
