"""Domain-specific errors for fognode."""


class FognodeError(Exception):
    """Base error for fognode."""


class ConfigError(FognodeError):
    """Base configuration error."""


class ConfigValidationError(ConfigError):
    """Raised when a config file does not conform to schema or semantics."""


class ConfigLoadError(ConfigError):
    """Raised when reading the config file fails."""


class ConnectionSetupError(FognodeError):
    """Raised when MTU negotiation or service discovery aborts a connection."""


class CharacteristicDiscoveryError(FognodeError):
    """Raised when a single characteristic cannot be discovered or subscribed."""


class DeviceError(FognodeError):
    """Base error for device actions."""


class ActionNotRecognizedError(DeviceError):
    """Raised when a device has no action channel for the requested name."""

    def __init__(self, action_name: str) -> None:
        super().__init__(f"action {action_name} not recognised")
        self.action_name = action_name


class InvalidActionPayloadError(DeviceError):
    """Raised when an action payload cannot be encoded for the radio link."""


class RegistryError(FognodeError):
    """Base error for registry conflicts."""


class AlreadyRegisteredError(RegistryError):
    """Raised when a subscriber key already has a callback registration."""

    def __init__(self, subscriber_key: str, callback_id: str) -> None:
        super().__init__(f"{subscriber_key} already registered")
        self.subscriber_key = subscriber_key
        self.callback_id = callback_id


class AlreadyRunningError(RegistryError):
    """Raised when a transport runner is started twice."""


class CallbackDeliveryError(FognodeError):
    """Raised by a deliver function when a subscriber rejects a reading."""


class DeviceServiceError(FognodeError):
    """Raised when the remote device service rejects a request."""


class TransportError(FognodeError):
    """Base transport error."""


class TransportConnectError(TransportError):
    """Raised when the host stack fails to connect a peripheral."""


class TransportWriteError(TransportError):
    """Raised when a characteristic write fails on the radio link."""
