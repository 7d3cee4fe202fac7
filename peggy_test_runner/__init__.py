from .common import (
    ConvergenceState,
    DeployedContracts,
    Fee,
    RunnerConfig,
    SignerLocks,
)
from .error import (
    BridgeTestError,
    DeploymentError,
    ProvisioningError,
    RegistrationError,
    TransferError,
    ValsetRequestError,
    WaitTimeoutError,
)
from .keys import ValidatorKeys, provision
from .runner import Phase, TestRunner, make_runner, run_from_config

__version__ = "0.1.0"
