# -*- encoding: utf-8 -*-
"""
ZK Email SDK
zkemail_sdk.errors module

Exception hierarchy for the SDK.

Configuration and validation problems are raised before any network or
worker activity. Verification failures are not exceptions: the verifier
returns False for them.
"""

from typing import Optional


class ZkEmailError(Exception):
    """Base class for all SDK errors."""


class ConfigurationError(ZkEmailError):
    """The blueprint, prover or SDK is not set up for the requested operation."""


class UnsupportedFrameworkError(ConfigurationError):
    """A zk framework value outside the supported set was encountered."""

    def __init__(self, framework, operation: str = "") -> None:
        self.framework = framework
        detail = f"Unsupported zk framework: {framework!r}"
        if operation:
            detail += f" ({operation})"
        super().__init__(detail)


class BlueprintMismatchError(ConfigurationError):
    """A proof was checked against a blueprint other than the one that produced it."""


class ValidationError(ZkEmailError):
    """Email, regex definition or circuit output does not satisfy its bounds."""


class LengthMismatchError(ValidationError):
    """A decoded public part disagrees with the length slot that follows it."""


class TransportError(ZkEmailError):
    """Raised when the registry API returns an error response."""

    def __init__(self, status_code: int, message: str, url: Optional[str] = None) -> None:
        self.status_code = status_code
        self.message = message
        self.url = url
        detail = f"[{status_code}] {message}"
        if url:
            detail += f" ({url})"
        super().__init__(detail)


class RemoteProvingError(ZkEmailError):
    """The backend finished a remote proving job with status Failed."""

    def __init__(self, proof_id: str) -> None:
        self.proof_id = proof_id
        super().__init__(f"Remote proving failed for proof {proof_id}")


class ProofStateError(ZkEmailError):
    """An operation needs a proof in a different lifecycle state."""


class WorkerError(ZkEmailError):
    """The local proving worker reported an error or exited early."""
