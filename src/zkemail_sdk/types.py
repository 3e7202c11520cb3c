# -*- encoding: utf-8 -*-
"""
ZK Email SDK
zkemail_sdk.types module

Data types shared by the blueprint, prover, proof and codec modules.

Registry responses use snake_case keys. Packed proofs use the camelCase
keys of the JavaScript SDK so that a proof packed in a browser can be
unpacked here and vice versa.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum, IntEnum
from typing import Any, Optional


class ZkFramework(str, Enum):
    """Proving technology used to compile and prove a blueprint."""

    NONE = "none"
    CIRCOM = "circom"
    SP1 = "sp1"
    NOIR = "noir"

    @classmethod
    def parse(cls, value) -> ZkFramework:
        """Map a registry value (possibly empty) to a ZkFramework.

        Unknown strings raise ValueError; the set is closed.
        """
        if value is None or value == "":
            return cls.NONE
        if isinstance(value, cls):
            return value
        return cls(str(value).lower())


class ProofStatus(IntEnum):
    # Numbering follows the registry's protobuf enum.
    NONE = 0
    IN_PROGRESS = 1
    DONE = 2
    FAILED = 3

    @property
    def is_terminal(self) -> bool:
        return self in (ProofStatus.DONE, ProofStatus.FAILED)


class BlueprintStatus(IntEnum):
    NONE = 0
    DRAFT = 1
    IN_PROGRESS = 2
    DONE = 3
    FAILED = 4


def _pick(data: dict, *keys, default=None):
    """Return the first present key, so camelCase and snake_case both load."""
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


def server_date_to_datetime(value) -> Optional[datetime]:
    """Convert a registry ``{seconds, nanos}`` timestamp to an aware datetime."""
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, str):
        return datetime.fromisoformat(value)
    seconds = value.get("seconds", 0)
    nanos = value.get("nanos", 0)
    return datetime.fromtimestamp(seconds + nanos / 1e9, tz=timezone.utc)


@dataclass
class DecomposedRegexPart:
    """One fragment of a decomposed regex. Only public fragments are revealed."""

    is_public: bool
    regex_def: str
    max_length: Optional[int] = None

    @classmethod
    def from_dict(cls, data: dict) -> DecomposedRegexPart:
        return cls(
            is_public=bool(_pick(data, "isPublic", "is_public", default=False)),
            regex_def=_pick(data, "regexDef", "regex_def", default=""),
            max_length=_pick(data, "maxLength", "max_length"),
        )

    def to_dict(self) -> dict:
        data = {"isPublic": self.is_public, "regexDef": self.regex_def}
        if self.max_length is not None:
            data["maxLength"] = self.max_length
        return data


@dataclass
class DecomposedRegex:
    """A named extraction rule: an ordered sequence of public/private parts."""

    name: str
    location: str  # "header" | "body"
    max_length: int
    parts: list[DecomposedRegexPart]
    is_hashed: bool = False
    max_match_length: Optional[int] = None

    @classmethod
    def from_dict(cls, data: dict) -> DecomposedRegex:
        return cls(
            name=data["name"],
            location=data["location"],
            max_length=_pick(data, "maxLength", "max_length", default=0),
            parts=[DecomposedRegexPart.from_dict(p) for p in data.get("parts") or []],
            is_hashed=bool(_pick(data, "isHashed", "is_hashed", default=False)),
            max_match_length=_pick(data, "maxMatchLength", "max_match_length"),
        )

    def to_dict(self) -> dict:
        data = {
            "name": self.name,
            "location": self.location,
            "maxLength": self.max_length,
            "isHashed": self.is_hashed,
            "parts": [p.to_dict() for p in self.parts],
        }
        if self.max_match_length is not None:
            data["maxMatchLength"] = self.max_match_length
        return data


@dataclass
class ExternalInput:
    """Declaration of a caller-supplied value committed to by the proof."""

    name: str
    max_length: int

    @classmethod
    def from_dict(cls, data: dict) -> ExternalInput:
        return cls(
            name=data["name"],
            max_length=_pick(data, "maxLength", "max_length", default=0),
        )


@dataclass
class ExternalInputInput:
    """A value supplied for an ExternalInput at proving time."""

    name: str
    value: str
    max_length: Optional[int] = None

    def to_dict(self) -> dict:
        data = {"name": self.name, "value": self.value}
        if self.max_length is not None:
            data["maxLength"] = self.max_length
        return data


@dataclass
class VerifierContract:
    chain: Optional[int] = None
    address: Optional[str] = None


@dataclass
class ChunkedZkeyUrl:
    """Download link for one gzip-compressed chunk of a proving key."""

    suffix: str
    url: str

    @classmethod
    def from_dict(cls, data: dict) -> ChunkedZkeyUrl:
        return cls(suffix=data["suffix"], url=data["url"])


@dataclass
class BlueprintProps:
    """Configuration of a blueprint as stored in the registry."""

    slug: str = ""
    id: Optional[str] = None
    title: str = ""
    description: str = ""
    sender_domain: Optional[str] = None
    decomposed_regexes: list[DecomposedRegex] = field(default_factory=list)
    external_inputs: Optional[list[ExternalInput]] = None
    client_zk_framework: ZkFramework = ZkFramework.NONE
    server_zk_framework: ZkFramework = ZkFramework.NONE
    ignore_body_hash_check: bool = False
    remove_soft_linebreaks: bool = True
    email_header_max_length: Optional[int] = None
    email_body_max_length: Optional[int] = None
    sha_precompute_selector: Optional[str] = None
    client_status: BlueprintStatus = BlueprintStatus.DRAFT
    server_status: BlueprintStatus = BlueprintStatus.DRAFT
    verifier_contract: VerifierContract = field(default_factory=VerifierContract)
    version: Optional[int] = None

    @classmethod
    def from_response(cls, data: dict) -> BlueprintProps:
        """Build props from a ``GET /blueprint/{id}`` response body."""
        external_inputs = data.get("external_inputs")
        return cls(
            id=data.get("id"),
            slug=data.get("slug", ""),
            title=data.get("title", ""),
            description=data.get("description", ""),
            sender_domain=data.get("sender_domain"),
            decomposed_regexes=[
                DecomposedRegex.from_dict(r) for r in data.get("decomposed_regexes") or []
            ],
            external_inputs=(
                [ExternalInput.from_dict(e) for e in external_inputs]
                if external_inputs is not None else None
            ),
            client_zk_framework=ZkFramework.parse(data.get("client_zk_framework")),
            server_zk_framework=ZkFramework.parse(data.get("server_zk_framework")),
            ignore_body_hash_check=bool(data.get("ignore_body_hash_check", False)),
            remove_soft_linebreaks=bool(data.get("remove_soft_linebreaks", True)),
            email_header_max_length=data.get("email_header_max_length"),
            email_body_max_length=data.get("email_body_max_length"),
            sha_precompute_selector=data.get("sha_precompute_selector") or None,
            client_status=BlueprintStatus(data.get("client_status", BlueprintStatus.DRAFT)),
            server_status=BlueprintStatus(data.get("server_status", BlueprintStatus.DRAFT)),
            verifier_contract=VerifierContract(
                chain=data.get("verifier_contract_chain"),
                address=data.get("verifier_contract_address"),
            ),
            version=data.get("version"),
        )


@dataclass
class ProofProps:
    """All state of a proof. Replaced as a whole, never field by field."""

    id: str
    blueprint_id: str
    input: str = ""
    status: ProofStatus = ProofStatus.IN_PROGRESS
    zk_framework: ZkFramework = ZkFramework.NONE
    proof_data: Any = None
    public_outputs: Any = None
    public_data: Optional[dict] = None
    external_inputs: Optional[dict] = None
    started_at: Optional[datetime] = None
    proved_at: Optional[datetime] = None
    is_local: bool = False
    sp1_vkey_hash: Optional[str] = None

    def to_dict(self) -> dict:
        """Serialise to the camelCase transport shape used by packed proofs."""
        return {
            "id": self.id,
            "blueprintId": self.blueprint_id,
            "input": self.input,
            "status": int(self.status),
            "zkFramework": self.zk_framework.value,
            "proofData": self.proof_data,
            "publicOutputs": self.public_outputs,
            "publicData": self.public_data,
            "externalInputs": self.external_inputs,
            "startedAt": self.started_at.isoformat() if self.started_at else None,
            "provedAt": self.proved_at.isoformat() if self.proved_at else None,
            "isLocal": self.is_local,
            "sp1VkeyHash": self.sp1_vkey_hash,
        }

    @classmethod
    def from_dict(cls, data: dict) -> ProofProps:
        return cls(
            id=data.get("id", ""),
            blueprint_id=data["blueprintId"],
            input=data.get("input", ""),
            status=ProofStatus(data.get("status", ProofStatus.IN_PROGRESS)),
            zk_framework=ZkFramework.parse(data.get("zkFramework")),
            proof_data=data.get("proofData"),
            public_outputs=data.get("publicOutputs"),
            public_data=data.get("publicData"),
            external_inputs=data.get("externalInputs"),
            started_at=server_date_to_datetime(data.get("startedAt")),
            proved_at=server_date_to_datetime(data.get("provedAt")),
            is_local=bool(data.get("isLocal", False)),
            sp1_vkey_hash=data.get("sp1VkeyHash"),
        )
