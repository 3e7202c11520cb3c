# -*- encoding: utf-8 -*-
"""
ZK Email SDK
zkemail_sdk.codec module

Decoding of circuit public outputs into named, human-readable values.

Each backend lays its public outputs out differently:

- Circom: flat list of decimal field elements. 0 is the pubkey hash, 1-2
  the split header hash, then one slot per external input, then for each
  public part ceil(max_length / 31) packed slots (one slot if hashed).
  Packed slots hold up to 31 bytes little-endian.
- Noir: flat list of hex field elements. 0 is the pubkey hash, 1-2 the
  header hash, 3 the prover address, then ceil(max_length / 31) slots per
  external input, then for each regex either one hash slot per part,
  private parts included (hashed regex), or for each public part
  max_length one-byte slots followed by a length slot.
- SP1: a structured object whose ``outputs`` carry named fields.

The fixed leading offsets are a layout convention of the circuits, not
derived from any schema. They must change in lock-step with the circuits.
"""

import json
import logging
import math
from dataclasses import dataclass, field
from typing import Optional

from zkemail_sdk.backends import Circom, Noir, Sp1, backend_for
from zkemail_sdk.errors import LengthMismatchError, UnsupportedFrameworkError, ValidationError
from zkemail_sdk.inputs import add_max_length_to_external_inputs

logger = logging.getLogger(__name__)

CIRCOM_SIGNAL_OFFSET = 3  # pubkey hash, header hash[0], header hash[1]
NOIR_OUTPUT_OFFSET = 4    # pubkey hash, header hash[0], header hash[1], prover address
FIELD_BYTES = 31


def packed_signal_count(max_length: int) -> int:
    """Number of field elements needed to pack ``max_length`` bytes."""
    return math.ceil(max_length / FIELD_BYTES)


def _load(value):
    if isinstance(value, (str, bytes)):
        return json.loads(value)
    return value


def unpack_field_string(values) -> str:
    """Decode Circom packed field elements into a string.

    Each element holds bytes in little-endian order. Zero elements are
    padding and contribute nothing.
    """
    raw = bytearray()
    for value in values:
        try:
            n = int(value)
        except (TypeError, ValueError):
            logger.warning("Failed to parse integer: %r", value)
            continue
        if n == 0:
            continue
        raw.extend(n.to_bytes((n.bit_length() + 7) // 8, "big")[::-1])
    return raw.decode("utf-8", errors="replace")


def field_to_bytes(hex_value: str) -> bytes:
    """Big-endian bytes of a hex field element, without leading zero bytes."""
    n = int(hex_value, 16)
    if n == 0:
        return b""
    return n.to_bytes((n.bit_length() + 7) // 8, "big")


def parse_public_signals(public_signals, decomposed_regexes, external_inputs=None) -> dict:
    """Decode Circom public signals into ``{regex name: [part, ...]}``.

    Args:
        public_signals: list of decimal strings as produced by snarkjs.
        decomposed_regexes: the blueprint's DecomposedRegex list, in order.
        external_inputs: the blueprint's ExternalInput declarations, if any.

    Returns:
        dict mapping each regex name to the decoded values of its public parts.
    """
    public_signals = _load(public_signals)
    index = CIRCOM_SIGNAL_OFFSET + len(external_inputs or [])
    public_data = {}

    for regex in decomposed_regexes:
        signal_length = 1 if regex.is_hashed else packed_signal_count(regex.max_length or 0)
        part_outputs = []
        for part in regex.parts:
            if not part.is_public:
                continue
            chunk = public_signals[index:index + signal_length]
            if regex.is_hashed:
                part_outputs.append(",".join(str(v) for v in chunk))
            else:
                part_outputs.append(unpack_field_string(chunk))
            index += signal_length
        public_data[regex.name] = part_outputs

    return public_data


def _noir_part_length(regex, part) -> int:
    length = part.max_length or regex.max_match_length or regex.max_length
    if not length:
        raise ValidationError(
            f"No max length found for public part of {regex.name}. Either the part "
            "or the decomposed regex must define one"
        )
    return length


def parse_noir_public_outputs(
    public_outputs,
    decomposed_regexes,
    external_input_definitions=None,
    external_inputs=None,
):
    """Decode Noir public outputs.

    Args:
        public_outputs: list of 0x-prefixed hex field elements.
        decomposed_regexes: the blueprint's DecomposedRegex list, in order.
        external_input_definitions: the blueprint's ExternalInput list.
        external_inputs: ExternalInputInput values supplied for the proof.

    Returns:
        (public_data, external_inputs_proof) where external_inputs_proof is
        None when no external inputs were given.

    Raises:
        LengthMismatchError: if a decoded part disagrees with its length slot.
    """
    public_outputs = _load(public_outputs)
    index = NOIR_OUTPUT_OFFSET
    external_inputs_proof = None

    if external_inputs is not None:
        external_inputs_proof = {}
        for external_input in add_max_length_to_external_inputs(
            external_inputs, external_input_definitions
        ):
            index += packed_signal_count(external_input.max_length)
            external_inputs_proof[external_input.name] = external_input.value

    public_data = {}
    for regex in decomposed_regexes:
        part_outputs = []
        for part in regex.parts:
            # hashed regexes commit one slot per part, private parts included
            if regex.is_hashed:
                part_outputs.append(public_outputs[index])
                index += 1
                continue
            if not part.is_public:
                continue

            length = _noir_part_length(regex, part)
            raw = b"".join(field_to_bytes(v) for v in public_outputs[index:index + length])
            index += length
            declared = int(public_outputs[index], 16)
            index += 1
            if len(raw) != declared:
                raise LengthMismatchError(
                    f"Length of part of {regex.name} didn't match the given length "
                    f"output: decoded {len(raw)}, declared {declared}"
                )
            part_outputs.append(raw.decode("utf-8", errors="replace"))
        public_data[regex.name] = part_outputs

    return public_data, external_inputs_proof


@dataclass
class Sp1PublicOutputs:
    public_key_hash: bytes
    from_domain_hash: bytes
    external_inputs: dict = field(default_factory=dict)
    outputs_hex: Optional[str] = None


def parse_sp1_public_outputs(public_outputs) -> Sp1PublicOutputs:
    """Read the named fields of an SP1 execution's public outputs."""
    public_outputs = _load(public_outputs)
    try:
        outputs = public_outputs["outputs"]
        return Sp1PublicOutputs(
            public_key_hash=bytes(outputs["public_key_hash"]),
            from_domain_hash=bytes(outputs.get("from_domain_hash") or []),
            external_inputs=dict(outputs.get("external_inputs") or {}),
            outputs_hex=public_outputs.get("outputs_hex"),
        )
    except (KeyError, TypeError) as exc:
        raise ValidationError(f"Malformed SP1 public outputs: {exc}") from exc


def decode_public_data(
    framework,
    public_outputs,
    decomposed_regexes,
    external_input_definitions=None,
    external_inputs=None,
) -> Optional[dict]:
    """Decode public outputs for any backend.

    SP1 outputs are already named by the backend, so None is returned for
    them and the registry's public data is used as is.
    """
    backend = backend_for(framework)
    if isinstance(backend, Circom):
        return parse_public_signals(public_outputs, decomposed_regexes, external_input_definitions)
    if isinstance(backend, Noir):
        public_data, _ = parse_noir_public_outputs(
            public_outputs, decomposed_regexes, external_input_definitions, external_inputs
        )
        return public_data
    if isinstance(backend, Sp1):
        return None
    raise UnsupportedFrameworkError(framework, "decode public outputs")


def get_pub_key_hash(framework, public_outputs):
    """Extract the DKIM pubkey commitment from public outputs.

    Returns an int for Circom and Noir, raw bytes for SP1.

    Raises:
        UnsupportedFrameworkError: for any framework outside the closed set.
    """
    backend = backend_for(framework)
    if isinstance(backend, Circom):
        return int(_load(public_outputs)[0])
    if isinstance(backend, Noir):
        return int(_load(public_outputs)[0], 16)
    if isinstance(backend, Sp1):
        return parse_sp1_public_outputs(public_outputs).public_key_hash
    raise UnsupportedFrameworkError(framework, "pubkey hash")
