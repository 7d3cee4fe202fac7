from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    # pylint: disable=cyclic-import
    from .wait import PredicateProtocol


class BridgeTestError(Exception):
    pass


class ProvisioningError(BridgeTestError):
    def __init__(self, path: str, reason: str) -> None:
        super().__init__('{}: {}'.format(path, reason))
        self.path = path
        self.reason = reason


class RegistrationError(BridgeTestError):
    def __init__(self, validator: str, reason: str) -> None:
        super().__init__('Failed to register Eth address for {}: {}'.format(validator, reason))
        self.validator = validator
        self.reason = reason


class DeploymentError(BridgeTestError):
    def __init__(self, reason: str, output: str = '') -> None:
        super().__init__('Failed to deploy contracts: {}'.format(reason))
        self.reason = reason
        self.output = output


class TransferError(BridgeTestError):
    def __init__(self, recipient: str, reason: str) -> None:
        super().__init__('Failed to send Eth to {}: {}'.format(recipient, reason))
        self.recipient = recipient
        self.reason = reason


class ValsetRequestError(BridgeTestError):
    def __init__(self, requester: str, reason: str) -> None:
        super().__init__('Failed to send valset request as {}: {}'.format(requester, reason))
        self.requester = requester
        self.reason = reason


class WaitTimeoutError(BridgeTestError):
    def __init__(self, predicate: 'PredicateProtocol', timeout: Optional[float]) -> None:
        super().__init__('Failed to satisfy {} after {}s'.format(predicate, timeout))
        self.predicate = predicate
        self.timeout = timeout


class HttpRequestException(Exception):
    def __init__(self, status_code: int, content: str) -> None:
        super().__init__('HTTP {}: {}'.format(status_code, content))
        self.status_code = status_code
        self.content = content
