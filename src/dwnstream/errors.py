from enum import Enum


class DwnErrorCode(str, Enum):
    EVENT_STREAM_NOT_OPEN = "EventStreamNotOpenError"
    EVENT_STREAM_CONFIGURATION = "EventStreamConfigurationError"
    EVENT_STREAM_PROVISIONING_FAILED = "EventStreamProvisioningFailed"
    EVENT_STREAM_DECODE = "EventStreamDecodeError"
    BROKER_RESOURCE_EXISTS = "BrokerResourceExists"


class DwnError(Exception):
    """Base error carrying a stable code the host runtime can match on."""

    def __init__(self, code: DwnErrorCode, message: str):
        super().__init__(f"{code.value}: {message}")
        self.code = code
        self.message = message


class ConfigurationError(DwnError):
    def __init__(self, message: str):
        super().__init__(DwnErrorCode.EVENT_STREAM_CONFIGURATION, message)


class ProvisioningError(DwnError):
    """Topic or subscription could not be created after retrying."""

    def __init__(self, resource: str, cause: BaseException, retryable: bool = True):
        super().__init__(
            DwnErrorCode.EVENT_STREAM_PROVISIONING_FAILED,
            f"could not provision '{resource}': {cause}",
        )
        self.resource = resource
        self.cause = cause
        self.retryable = retryable


class DecodeError(DwnError):
    def __init__(self, message: str):
        super().__init__(DwnErrorCode.EVENT_STREAM_DECODE, message)


class ResourceExistsError(DwnError):
    """Raised by a broker when a topic or subscription is created twice."""

    def __init__(self, resource: str):
        super().__init__(
            DwnErrorCode.BROKER_RESOURCE_EXISTS, f"'{resource}' already exists"
        )
        self.resource = resource
