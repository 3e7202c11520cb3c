# -*- encoding: utf-8 -*-
"""
ZK Email SDK
zkemail_sdk.relayer module

Boundary to the email-parsing and circuit-input primitives.

The primitives (DKIM-aware email parsing, circuit input generation, SP1
verification, Poseidon and Noir RSA key hashing) are provided by a native
library. The SDK talks to them through the RelayerUtils interface and
never reaches into ambient state: every core operation takes the handle as
an argument and falls back to the process-wide handle installed with
init_relayer().

Lifecycle of the process-wide handle: initialised once, never torn down.
"""

from __future__ import annotations

import abc
import hashlib
import logging
import threading
import weakref
from dataclasses import dataclass, field
from typing import Optional

from zkemail_sdk.errors import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass
class ParsedEmail:
    """Result of parsing a raw .eml with DKIM canonicalisation applied."""

    canonicalized_header: str
    canonicalized_body: str
    cleaned_body: str
    headers: dict = field(default_factory=dict)  # name -> list of values
    public_key: Optional[bytes] = None
    signature: Optional[bytes] = None

    def get_header(self, name: str) -> Optional[str]:
        """Return the first value of a header, matching names case-insensitively."""
        for key, values in self.headers.items():
            if key.lower() == name.lower() and values:
                return values[0]
        return None


class RelayerUtils(abc.ABC):
    """Email parsing and circuit primitives used by the prover and verifier."""

    @abc.abstractmethod
    async def parse_email(self, eml: str, ignore_body_hash_check: bool = False) -> ParsedEmail:
        """Parse and DKIM-canonicalise a raw email."""

    @abc.abstractmethod
    async def generate_circuit_inputs(
        self, eml: str, decomposed_regexes: list, external_inputs: list, params: dict
    ) -> dict:
        """Return the ordered witness input map for a Circom/SP1 circuit."""

    @abc.abstractmethod
    async def generate_noir_circuit_inputs(
        self, eml: str, regex_inputs: list, external_inputs: list, params: dict
    ) -> dict:
        """Return the witness input map for a Noir circuit."""

    @abc.abstractmethod
    async def verify_sp1_proof(self, proof: bytes, outputs: bytes, vkey_hash: str) -> bool:
        """Verify an SP1 proof against its public outputs and program vkey hash."""

    @abc.abstractmethod
    def poseidon_large(self, chunks: list) -> int:
        """Poseidon hash over field-sized chunks (Circom pubkey commitment)."""

    @abc.abstractmethod
    def noir_pubkey_hash(self, modulus: int) -> int:
        """Hash of a 2048-bit RSA modulus as committed by the Noir circuits."""


_handle_lock = threading.Lock()
_handle: Optional[RelayerUtils] = None


def init_relayer(utils: RelayerUtils) -> RelayerUtils:
    """Install the process-wide relayer handle.

    Installing the same object again is a no-op. Installing a different one
    after initialisation raises, since parsed-email caches and callers may
    already hold the first handle.
    """
    global _handle
    with _handle_lock:
        if _handle is not None and _handle is not utils:
            raise ConfigurationError("Relayer utils were already initialised")
        _handle = utils
        return _handle


def get_relayer(utils: Optional[RelayerUtils] = None) -> RelayerUtils:
    """Return ``utils`` if given, else the process-wide handle."""
    if utils is not None:
        return utils
    if _handle is None:
        raise ConfigurationError(
            "Relayer utils are not initialised, call init_relayer() first"
        )
    return _handle


# relayer -> {(eml digest, ignore_body_hash_check): ParsedEmail}
_parsed_email_cache = weakref.WeakKeyDictionary()


async def parse_email(
    relayer: RelayerUtils, eml: str, ignore_body_hash_check: bool = False
) -> ParsedEmail:
    """Parse an email through the relayer, memoising by content hash."""
    cache = _parsed_email_cache.setdefault(relayer, {})
    key = (hashlib.sha256(eml.encode("utf-8")).hexdigest(), ignore_body_hash_check)
    cached = cache.get(key)
    if cached is not None:
        return cached
    try:
        parsed = await relayer.parse_email(eml, ignore_body_hash_check)
    except Exception:
        logger.error("Failed to parse email")
        raise
    cache[key] = parsed
    return parsed
