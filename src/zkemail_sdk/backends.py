# -*- encoding: utf-8 -*-
"""
ZK Email SDK
zkemail_sdk.backends module

The closed set of proving backends.

ProvingBackend is a sum type over Circom, Sp1 and Noir. The prover and the
codec dispatch on it with isinstance chains that end in
UnsupportedFrameworkError, so adding a backend means adding a variant here
and a branch at every dispatch site.
"""

from __future__ import annotations

import abc
from dataclasses import dataclass
from typing import ClassVar, Optional, Union

from zkemail_sdk.errors import ConfigurationError, UnsupportedFrameworkError
from zkemail_sdk.types import ZkFramework


@dataclass
class NoirProof:
    proof: bytes
    public_inputs: list  # hex-encoded field elements


class NoirBackend(abc.ABC):
    """Caller-initialised Noir executor and UltraHonk prover.

    Loading the Noir runtime is expensive, so the caller creates it once and
    passes it in GenerateProofOptions.
    """

    @abc.abstractmethod
    async def execute(self, circuit: dict, inputs: dict):
        """Run the circuit on ``inputs`` and return the witness."""

    @abc.abstractmethod
    async def generate_proof(self, circuit: dict, witness) -> NoirProof:
        """Prove a witness produced by :meth:`execute`."""


@dataclass
class GenerateProofOptions:
    noir_backend: Optional[NoirBackend] = None


@dataclass(frozen=True)
class Circom:
    framework: ClassVar[ZkFramework] = ZkFramework.CIRCOM


@dataclass(frozen=True)
class Sp1:
    framework: ClassVar[ZkFramework] = ZkFramework.SP1


@dataclass(frozen=True)
class Noir:
    framework: ClassVar[ZkFramework] = ZkFramework.NOIR

    backend: Optional[NoirBackend] = None


ProvingBackend = Union[Circom, Sp1, Noir]


def backend_for(framework, options: Optional[GenerateProofOptions] = None) -> ProvingBackend:
    """Resolve a framework value to its backend variant.

    Raises:
        ConfigurationError: if no framework is set.
        UnsupportedFrameworkError: for values outside the closed set.
    """
    if not isinstance(framework, ZkFramework):
        try:
            framework = ZkFramework.parse(framework)
        except ValueError:
            raise UnsupportedFrameworkError(framework) from None
    if framework == ZkFramework.NONE:
        raise ConfigurationError("No zk framework set")
    if framework == ZkFramework.CIRCOM:
        return Circom()
    if framework == ZkFramework.SP1:
        return Sp1()
    if framework == ZkFramework.NOIR:
        return Noir(backend=options.noir_backend if options else None)
    raise UnsupportedFrameworkError(framework)
