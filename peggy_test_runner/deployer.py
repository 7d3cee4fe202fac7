import asyncio
import logging
from typing import Dict, List, Optional
import typing_extensions

from eth_utils import is_address, to_checksum_address

from .common import DeployedContracts, RunnerConfig
from .error import DeploymentError

PEGGY_DEPLOYED_MARKER = 'Peggy deployed at Address -'
ERC20_DEPLOYED_MARKER = 'ERC20 deployed at Address -'

logger = logging.getLogger('deployer')


class ContractDeployment(typing_extensions.Protocol):
    async def deploy(self) -> DeployedContracts:
        # pylint: disable=pointless-statement, no-self-use
        ...


def extract_address_from_line(line: str) -> str:
    """We're getting back something along the lines of:

    Peggy deployed at Address - 0x8858eeB3DfffA017D4BCE9801D340D36Cf895CCf
    """
    candidate = line.split('-')[-1].strip()
    if not is_address(candidate):
        raise DeploymentError('unexpected address {!r}'.format(candidate), line)
    return to_checksum_address(candidate)


def parse_deployer_output(output: str) -> DeployedContracts:
    addresses: Dict[str, Optional[str]] = {PEGGY_DEPLOYED_MARKER: None, ERC20_DEPLOYED_MARKER: None}
    for line in output.splitlines():
        for marker in addresses:
            if marker in line:
                addresses[marker] = extract_address_from_line(line)
                break

    missing = [marker for marker, address in addresses.items() if address is None]
    if missing:
        raise DeploymentError('no {!r} line in the deployer output'.format(', '.join(missing)), output)
    return DeployedContracts(
        peggy_address=addresses[PEGGY_DEPLOYED_MARKER],  # type: ignore
        erc20_address=addresses[ERC20_DEPLOYED_MARKER],  # type: ignore
    )


def deployer_arguments(config: RunnerConfig) -> List[str]:
    miner_key = config.miner_private_key
    if not miner_key.startswith('0x'):
        miner_key = '0x' + miner_key
    return [
        '--cosmos-node={}'.format(config.cosmos_node),
        '--eth-node={}'.format(config.eth_node),
        '--eth-privkey={}'.format(miner_key.lower()),
        '--peggy-id={}'.format(config.peggy_id),
        '--contract={}'.format(config.peggy_contract_artifact),
        '--erc20-contract={}'.format(config.erc20_contract_artifact),
        '--test-mode=true',
    ]


class SubprocessContractDeployer:
    """Deploys the Peggy and test ERC20 contracts with the Solidity project's
    deployment script and reads their addresses from its output.
    """

    def __init__(self, config: RunnerConfig) -> None:
        self.command = list(config.deployer_command)
        self.arguments = deployer_arguments(config)
        self.cwd = config.deployer_cwd

    def __repr__(self) -> str:
        return '<SubprocessContractDeployer(command={!r}, cwd={!r})>'.format(self.command, self.cwd)

    async def run(self) -> str:
        logging.info("COMMAND %s", ' '.join(self.command))
        try:
            process = await asyncio.create_subprocess_exec(
                *self.command,
                *self.arguments,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self.cwd,
            )
            stdout, stderr = await process.communicate()
        except OSError as e:
            raise DeploymentError('could not run {}: {}'.format(self.command[0], e)) from e

        output = stdout.decode('utf-8', errors='replace')
        for line in output.splitlines():
            logger.info('stdout: %s', line)
        for line in stderr.decode('utf-8', errors='replace').splitlines():
            logger.info('stderr: %s', line)
        if process.returncode != 0:
            logging.warning("EXITED %s %d", self.command[0], process.returncode)
        return output

    async def deploy(self) -> DeployedContracts:
        contracts = parse_deployer_output(await self.run())
        logging.info("Peggy deployed at %s, ERC20 deployed at %s", contracts.peggy_address, contracts.erc20_address)
        return contracts
