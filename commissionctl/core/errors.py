"""Domain-specific errors for commissionctl."""

from __future__ import annotations

from commissionctl.core.model import StatusCode


class CommissioningError(Exception):
    """Base error for commissionctl."""


class ConfigError(CommissioningError):
    """Raised when persisted or profile configuration is unusable."""


class InvalidRangeError(ConfigError):
    """Raised when a credential value falls outside its bit-width or is a weak value."""


class ProfileValidationError(ConfigError):
    """Raised when a profile file does not conform to schema or semantics."""


class ProfileLoadError(ConfigError):
    """Raised when loading profile sources fails."""


class ProfileNotFoundError(ConfigError):
    """Raised when a requested profile id is not loaded."""


class StorageError(ConfigError):
    """Raised when the persisted key/value store cannot be read or written."""


class InvalidPairingCodeError(CommissioningError):
    """Raised when a manual pairing code or QR payload cannot be decoded."""


class ProtocolError(CommissioningError):
    """Raised on malformed or out-of-order frames."""


class MalformedFrameError(ProtocolError):
    """Raised when a datagram does not carry a decodable frame header."""


class FrameIntegrityError(ProtocolError):
    """Raised when an encrypted payload fails authentication."""


class AuthError(CommissioningError):
    """Raised when password-authenticated session establishment fails."""


class IssuanceError(CommissioningError):
    """Raised when operational credentials could not be issued."""


class HandlerError(CommissioningError):
    """Base for device-level failures that map onto a protocol status."""

    status = StatusCode.FAILURE


class UnsupportedCommandError(HandlerError):
    """Raised when no handler is registered for a command."""

    status = StatusCode.UNSUPPORTED_COMMAND


class UnsupportedAttributeError(HandlerError):
    """Raised when an attribute is unknown or not writable."""

    status = StatusCode.UNSUPPORTED_ATTRIBUTE


class UnsupportedEndpointError(HandlerError):
    """Raised when a frame addresses an endpoint that does not exist."""

    status = StatusCode.UNSUPPORTED_ENDPOINT


class ConstraintError(HandlerError):
    """Raised when a written value does not fit the attribute."""

    status = StatusCode.CONSTRAINT_ERROR


class CommandFailedError(HandlerError):
    """Raised when a command handler itself raised."""


class TransportError(CommissioningError):
    """Base transport error."""


class ListenerBindError(TransportError):
    """Raised when the UDP listener cannot bind its port."""
