"""Exceptions raised while authenticating and connecting."""

from __future__ import annotations


class SamlVPNError(Exception):
    """Base exception for samlvpn errors.

    ``phase`` names the step of the connection flow that failed and is shown
    next to the message by the command line interface.
    """

    phase = "samlvpn"


class ConfigurationError(SamlVPNError):
    """Raised when the samlvpn or OpenVPN configuration cannot be used."""

    phase = "config"


class ResolutionError(SamlVPNError):
    """Raised when the VPN hostname does not resolve to any address."""

    phase = "resolve"


class ProbeError(SamlVPNError):
    phase = "probe"


class ProbeTimeoutError(ProbeError):
    """Raised when the probing OpenVPN run exceeds its deadline."""


class ProbeExecError(ProbeError):
    """Raised when the probing OpenVPN run cannot be started or fails outright."""

    def __init__(self, message: str, output: str = "") -> None:
        super().__init__(message)
        self.output = output


class ProbeParseError(ProbeError):
    """Raised when the probe output holds no usable AUTH_FAILED challenge."""


class CallbackError(SamlVPNError):
    phase = "callback"


class CallbackTimeoutError(CallbackError):
    """Raised when no SAML response arrives before the listener times out."""


class CallbackValidationError(CallbackError):
    """Raised when a callback request does not carry a usable SAML response."""


class CredentialError(SamlVPNError):
    phase = "credentials"


class ConnectionFailedError(SamlVPNError):
    phase = "connect"


class AuthFailedError(ConnectionFailedError):
    """Raised once the server rejected every attempt the retry budget allows."""

    def __init__(self, attempts: int) -> None:
        super().__init__(f"authentication failed after {attempts} attempt(s)")
        self.attempts = attempts


class ClientExitError(ConnectionFailedError):
    """Raised when OpenVPN exits non-zero without a recognised marker line."""

    def __init__(self, exit_code: int) -> None:
        super().__init__(f"openvpn exited with code {exit_code}")
        self.exit_code = exit_code
