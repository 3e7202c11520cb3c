# -*- encoding: utf-8 -*-
"""
ZK Email SDK
zkemail_sdk.inputs module

Turns a raw email plus a blueprint's extraction rules into circuit inputs.

Everything here validates before it delegates: external inputs must all be
supplied, regex definitions must be anchored by a private prefix, header
and body must fit their padded maximum lengths, and every regex match must
fit its declared bound. Only then is the relayer asked for the witness.
"""

import json
import logging
import re
from typing import Optional

from zkemail_sdk.errors import ConfigurationError, ValidationError
from zkemail_sdk.relayer import get_relayer, parse_email
from zkemail_sdk.types import ExternalInputInput

logger = logging.getLogger(__name__)

DEFAULT_EMAIL_HEADER_MAX_LENGTH = 256
DEFAULT_EMAIL_BODY_MAX_LENGTH = 2560
DEFAULT_NOIR_HEADER_MAX_LENGTH = 512
ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

_DKIM_DOMAIN_RE = re.compile(r"d=([^;]+)")
_DKIM_SELECTOR_RE = re.compile(r"s=([^;]+)")


def add_max_length_to_external_inputs(external_inputs, definitions=None):
    """Attach declared max lengths to caller-supplied external inputs.

    Args:
        external_inputs: ExternalInputInput list supplied by the caller.
        definitions: ExternalInput declarations of the blueprint.

    Returns:
        list of ExternalInputInput in declaration order, max_length set.

    Raises:
        ConfigurationError: if a declared input was not supplied.
    """
    by_name = {ei.name: ei for ei in external_inputs or []}
    result = []
    for definition in definitions or []:
        supplied = by_name.get(definition.name)
        if supplied is None:
            raise ConfigurationError(
                f"You must provide the external input for {definition.name}"
            )
        result.append(ExternalInputInput(
            name=supplied.name,
            value=supplied.value,
            max_length=definition.max_length,
        ))
    return result


def validate_decomposed_regex(decomposed_regex) -> str:
    """Check that a decomposed regex can be located in its haystack.

    The leading private part anchors the match, so it must exist and carry
    a non-empty pattern.

    Returns:
        The anchoring prefix pattern.
    """
    if decomposed_regex.location not in ("header", "body"):
        raise ValidationError(
            f"Unsupported location {decomposed_regex.location} for {decomposed_regex.name}"
        )
    if not decomposed_regex.parts:
        raise ValidationError(f"Decomposed regex {decomposed_regex.name} has no parts")
    for i, part in enumerate(decomposed_regex.parts):
        if not isinstance(part.regex_def, str):
            raise ValidationError(f"Part {i} must have a string 'regex_def' field")

    first = decomposed_regex.parts[0]
    if first.is_public:
        raise ValidationError(
            "Part has to have a regex with is_public = False in order to find it later"
        )
    if not first.regex_def:
        raise ValidationError("Part has to have a nonempty regex with is_public = False")
    return first.regex_def


def extract_substr(haystack: str, decomposed_regex, reveal_private: bool = False) -> list:
    """Match a decomposed regex against a haystack.

    Each part becomes one named group, concatenated in order, so capture
    groups inside a part do not shift the others.

    Returns:
        ``[whole match]`` when reveal_private is False, otherwise the
        public parts' substrings in part order.

    Raises:
        ValidationError: if the regex does not match.
    """
    pattern = "".join(
        f"(?P<part{i}>{part.regex_def})" for i, part in enumerate(decomposed_regex.parts)
    )
    try:
        match = re.search(pattern, haystack)
    except re.error as exc:
        raise ValidationError(
            f"Invalid regex for decomposed regex {decomposed_regex.name}: {exc}"
        ) from exc
    if match is None:
        raise ValidationError(
            f"Failed to match decomposed regex {decomposed_regex.name} in the email"
        )
    if not reveal_private:
        return [match.group(0)]
    return [
        match.group(f"part{i}")
        for i, part in enumerate(decomposed_regex.parts)
        if part.is_public
    ]


def test_decomposed_regex(body: str, header: str, decomposed_regex, reveal_private: bool = False):
    """Run one decomposed regex against the email and enforce its bounds.

    Args:
        body: cleaned body, already cut at the precompute selector if any.
        header: canonicalised header.
        decomposed_regex: the DecomposedRegex to test.
        reveal_private: return the public parts separately instead of the
            combined match.

    Raises:
        ValidationError: if the match is missing or exceeds max_length or
            max_match_length.
    """
    if decomposed_regex.location == "body":
        haystack = body
    elif decomposed_regex.location == "header":
        haystack = header
    else:
        raise ValidationError(f"Unsupported location {decomposed_regex.location}")

    combined = extract_substr(haystack, decomposed_regex, False)
    matched = len(combined[0])
    if decomposed_regex.max_length and matched > decomposed_regex.max_length:
        raise ValidationError(
            f"Max length of {decomposed_regex.max_length} of extracted result was exceeded "
            f"for decomposed regex {decomposed_regex.name}"
        )
    if decomposed_regex.max_match_length and matched > decomposed_regex.max_match_length:
        raise ValidationError(
            f"Max match length of {decomposed_regex.max_match_length} of extracted result "
            f"was exceeded for decomposed regex {decomposed_regex.name}"
        )

    if not reveal_private:
        return combined
    return extract_substr(haystack, decomposed_regex, True)


# pytest would otherwise collect the helper above as a test
test_decomposed_regex.__test__ = False


def sha256_padded_length(data: bytes) -> int:
    """Length of ``data`` after SHA-256 padding (0x80, zeros, 64-bit length)."""
    return ((len(data) + 9 + 63) // 64) * 64


def check_input_lengths(
    header: str,
    body: str,
    max_header_length: int,
    max_body_length: Optional[int],
    ignore_body_hash_check: bool = False,
) -> None:
    """Fail if the padded header or body exceeds its maximum length."""
    header_length = sha256_padded_length(header.encode("utf-8"))
    if header_length > max_header_length:
        raise ValidationError(f"emailHeaderMaxLength of {max_header_length} was exceeded")
    if ignore_body_hash_check:
        return
    body_length = sha256_padded_length(body.encode("utf-8"))
    if body_length > max_body_length:
        raise ValidationError(f"emailBodyMaxLength of {max_body_length} was exceeded")


def get_sender_domain(parsed_email) -> str:
    """The ``d=`` tag of the first DKIM-Signature header, or ``""``."""
    match = _DKIM_DOMAIN_RE.search(parsed_email.get_header("DKIM-Signature") or "")
    return match.group(1).strip() if match else ""


def get_dkim_selector(parsed_email) -> str:
    match = _DKIM_SELECTOR_RE.search(parsed_email.get_header("DKIM-Signature") or "")
    return match.group(1).strip() if match else ""


def select_body(cleaned_body: str, sha_precompute_selector: Optional[str]) -> str:
    """Return the part of the body after the precompute selector.

    Raises:
        ValidationError: if a selector is set but not present in the body.
    """
    if not sha_precompute_selector:
        return cleaned_body
    parts = cleaned_body.split(sha_precompute_selector)
    if len(parts) < 2 or not parts[1]:
        raise ValidationError(
            f"Precompute selector was not found in email, selector: {sha_precompute_selector}"
        )
    return parts[1]


async def get_max_email_body_length(eml: str, sha_precompute_selector=None, relayer=None) -> int:
    """Length of the body that will actually be hashed in circuit."""
    parsed = await parse_email(get_relayer(relayer), eml, False)
    body = parsed.cleaned_body
    if not sha_precompute_selector:
        return len(body)
    index = body.find(sha_precompute_selector)
    if index == -1:
        return len(body)
    return len(body) - index - len(sha_precompute_selector)


async def test_blueprint(eml: str, props, reveal_private: bool = False, relayer=None) -> list:
    """Run every decomposed regex of a blueprint against an email.

    Returns:
        list with one entry per decomposed regex, as returned by
        test_decomposed_regex.
    """
    parsed = await parse_email(get_relayer(relayer), eml, props.ignore_body_hash_check)
    domain = get_sender_domain(parsed)
    if props.sender_domain != domain:
        raise ValidationError("The senderDomain of Blueprint and email are different")

    if props.email_header_max_length is None or (
        props.email_body_max_length is None and not props.ignore_body_hash_check
    ):
        raise ConfigurationError("emailBodyMaxLength and emailHeaderMaxLength must be provided")

    body = select_body(parsed.cleaned_body, props.sha_precompute_selector)
    header = parsed.canonicalized_header
    check_input_lengths(
        header,
        body,
        props.email_header_max_length,
        props.email_body_max_length,
        props.ignore_body_hash_check,
    )

    return [
        test_decomposed_regex(body, header, regex, reveal_private)
        for regex in props.decomposed_regexes
    ]


test_blueprint.__test__ = False


def build_proof_input_params(props) -> dict:
    """Proof input parameters of a blueprint, with defaults applied."""
    return {
        "email_header_max_length": props.email_header_max_length or DEFAULT_EMAIL_HEADER_MAX_LENGTH,
        "email_body_max_length": props.email_body_max_length or DEFAULT_EMAIL_BODY_MAX_LENGTH,
        "ignore_body_hash_check": props.ignore_body_hash_check,
        "remove_soft_linebreaks": props.remove_soft_linebreaks,
        "sha_precompute_selector": props.sha_precompute_selector,
    }


def _regex_input(regex) -> dict:
    return {
        "name": regex.name,
        "location": regex.location,
        "max_length": regex.max_length,
        "max_match_length": regex.max_match_length,
        "is_hashed": regex.is_hashed,
        "parts": [
            {"is_public": p.is_public, "regex_def": p.regex_def, "max_length": p.max_length}
            for p in regex.parts
        ],
    }


def _external_input(external_input) -> dict:
    return {
        "name": external_input.name,
        "value": external_input.value,
        "max_length": external_input.max_length,
    }


async def generate_proof_inputs(
    eml: str,
    decomposed_regexes,
    external_inputs,
    params: dict,
    relayer=None,
) -> str:
    """Generate Circom/SP1 circuit inputs for an email.

    Args:
        eml: raw email.
        decomposed_regexes: the blueprint's DecomposedRegex list.
        external_inputs: ExternalInputInput list with max_length attached.
        params: as returned by build_proof_input_params.
        relayer: optional RelayerUtils handle.

    Returns:
        JSON string of the ordered witness input map.
    """
    relayer = get_relayer(relayer)
    for regex in decomposed_regexes:
        validate_decomposed_regex(regex)

    try:
        parsed = await parse_email(relayer, eml, params["ignore_body_hash_check"])
        body = select_body(parsed.cleaned_body, params.get("sha_precompute_selector"))
        header = parsed.canonicalized_header

        check_input_lengths(
            header,
            body,
            params["email_header_max_length"],
            params["email_body_max_length"],
            params["ignore_body_hash_check"],
        )
        for regex in decomposed_regexes:
            test_decomposed_regex(body, header, regex)

        internal_params = {
            "max_header_length": params["email_header_max_length"],
            "max_body_length": params["email_body_max_length"],
            "ignore_body_hash_check": params["ignore_body_hash_check"],
            "remove_soft_line_breaks": params["remove_soft_linebreaks"],
            "sha_precompute_selector": params.get("sha_precompute_selector"),
        }
        logger.debug("Generating circuit inputs for %d regexes", len(decomposed_regexes))
        inputs = await relayer.generate_circuit_inputs(
            eml,
            [_regex_input(r) for r in decomposed_regexes],
            [_external_input(e) for e in external_inputs],
            internal_params,
        )
    except Exception:
        logger.error("Failed to generate inputs for proof")
        raise

    return json.dumps(dict(inputs))


def noir_max_match_length(decomposed_regex) -> Optional[int]:
    """First part bound greater than zero, else the regex-level bounds."""
    for part in decomposed_regex.parts:
        if part.max_length and part.max_length > 0:
            return part.max_length
    return decomposed_regex.max_match_length or decomposed_regex.max_length


def build_noir_regex_inputs(parsed_email, props, regex_graphs: dict) -> list:
    """Pair every decomposed regex with its compiled graph and haystack.

    Raises:
        ConfigurationError: if a regex has no compiled graph.
    """
    regex_inputs = []
    for regex in props.decomposed_regexes:
        regex_graph = regex_graphs.get(f"{regex.name}_regex.json")
        if not regex_graph:
            raise ConfigurationError(
                f"No regexGraph was compiled for decomposed regex {regex.name}"
            )

        if regex.location == "header":
            haystack = parsed_email.canonicalized_header
            haystack_location = "Header"
            max_haystack_length = props.email_header_max_length
        else:
            haystack = select_body(parsed_email.cleaned_body, props.sha_precompute_selector)
            haystack_location = "Body"
            max_haystack_length = props.email_body_max_length

        parts = []
        for part in regex.parts:
            entry = {"is_public": part.is_public, "regex_def": part.regex_def}
            if part.is_public:
                entry["max_length"] = part.max_length
            parts.append(entry)

        regex_inputs.append({
            "name": regex.name,
            "regex_graph_json": json.dumps(regex_graph),
            "haystack": haystack,
            "haystack_location": haystack_location,
            "max_haystack_length": max_haystack_length,
            "max_match_length": noir_max_match_length(regex),
            "parts": parts,
            "proving_framework": "noir",
        })
    return regex_inputs


def build_noir_params(props) -> dict:
    return {
        "max_header_length": props.email_header_max_length or DEFAULT_NOIR_HEADER_MAX_LENGTH,
        "max_body_length": props.email_body_max_length or 0,
        "ignore_body_hash_check": props.ignore_body_hash_check,
        "remove_soft_line_breaks": props.remove_soft_linebreaks,
        "sha_precompute_selector": props.sha_precompute_selector,
        "prover_eth_address": ZERO_ADDRESS,
    }


async def generate_noir_proof_inputs(
    eml: str,
    props,
    regex_graphs: dict,
    external_inputs,
    relayer=None,
):
    """Generate Noir circuit inputs for an email.

    Returns:
        (circuit_inputs, external_inputs_with_max_length)
    """
    relayer = get_relayer(relayer)
    if props.external_inputs and not external_inputs:
        names = ", ".join(e.name for e in props.external_inputs)
        raise ConfigurationError(
            f"The {props.slug} blueprint requires external inputs: {names}"
        )
    with_max_length = add_max_length_to_external_inputs(external_inputs, props.external_inputs)

    parsed = await parse_email(relayer, eml, props.ignore_body_hash_check)
    regex_inputs = build_noir_regex_inputs(parsed, props, regex_graphs)
    noir_params = build_noir_params(props)
    logger.info("Generating noir inputs for %d regexes", len(regex_inputs))

    circuit_inputs = await relayer.generate_noir_circuit_inputs(
        eml, regex_inputs, [_external_input(e) for e in with_max_length], noir_params
    )
    if not circuit_inputs:
        raise ValidationError("Could not generate circuit inputs for noir")

    # empty values are not part of the circuit's ABI
    circuit_inputs = {k: v for k, v in dict(circuit_inputs).items() if v}
    return circuit_inputs, with_max_length
