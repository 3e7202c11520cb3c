# -*- encoding: utf-8 -*-
"""
ZK Email SDK
zkemail_sdk.verifier module

Offline proof verification.

A proof is only checked cryptographically after its DKIM pubkey
commitment has been matched against one of the keys the sender domain
publishes. Keys come from the DKIM archive (``/api/key?domain=``) and are
hashed the way each circuit commits to them:

- Circom: Poseidon over the RSA modulus split into 9 chunks of 242 bits
- Noir:   the Noir RSA pubkey hash of the modulus
- SP1:    SHA-256 of the PKCS#1 DER encoding of the key

Verification failures return False. Only structural problems raise: a
proof checked against another blueprint, or an unknown framework.
"""

import asyncio
import base64
import hashlib
import logging
import re
from urllib.parse import quote

from cryptography.hazmat.primitives import serialization

from zkemail_sdk.backends import Circom, Sp1, backend_for
from zkemail_sdk.config import DEFAULTS
from zkemail_sdk.errors import BlueprintMismatchError
from zkemail_sdk.relayer import get_relayer
from zkemail_sdk.snarkjs import DEFAULT_SNARKJS_BIN, groth16_verify

logger = logging.getLogger(__name__)

POSEIDON_CHUNK_COUNT = 9
POSEIDON_CHUNK_BITS = 242

_P_VALUE_RE = re.compile(r"(?<=p=)([^;]+)(?=;|$)")


def extract_p_values(record: str) -> list:
    """Return every ``p=`` value of a DKIM TXT record."""
    return [value.strip() for value in _P_VALUE_RE.findall(record) if value.strip()]


async def get_public_keys(sender_domain: str, client, archive_url=None) -> list:
    """Fetch the base64 DKIM public keys published for a domain.

    Returns an empty list if the archive cannot be reached.
    """
    archive_url = (archive_url or DEFAULTS["ZKEMAIL_ARCHIVE_URL"]).rstrip("/")
    url = f"{archive_url}/api/key?domain={quote(sender_domain)}"
    try:
        records = await client.download_json(url)
    except Exception as exc:
        logger.error("Failed to get pubkey records from archive: %s", exc)
        return []

    keys = []
    for record in records or []:
        if record.get("domain") != sender_domain:
            continue
        keys.extend(extract_p_values(record.get("value") or ""))
    return keys


def load_public_key(p_value: str):
    """Load a DKIM ``p=`` value (base64 SubjectPublicKeyInfo) as an RSA key."""
    return serialization.load_der_public_key(base64.b64decode(p_value))


def split_to_chunks(value: int, chunk_bits: int, chunk_count: int) -> list:
    """Split an integer into little-endian chunks of ``chunk_bits`` bits."""
    mask = (1 << chunk_bits) - 1
    return [(value >> (chunk_bits * i)) & mask for i in range(chunk_count)]


def circom_pubkey_hash(public_key, relayer) -> int:
    modulus = public_key.public_numbers().n
    return relayer.poseidon_large(
        split_to_chunks(modulus, POSEIDON_CHUNK_BITS, POSEIDON_CHUNK_COUNT)
    )


def noir_pubkey_hash(public_key, relayer) -> int:
    return relayer.noir_pubkey_hash(public_key.public_numbers().n)


def sp1_pubkey_hash(public_key) -> bytes:
    der = public_key.public_bytes(
        serialization.Encoding.DER, serialization.PublicFormat.PKCS1
    )
    return hashlib.sha256(der).digest()


async def verify_pub_key(
    sender_domain: str,
    hashed_public_key,
    framework,
    client,
    archive_url=None,
    relayer=None,
) -> bool:
    """Check a pubkey commitment against the keys the domain publishes.

    Args:
        sender_domain: DKIM signing domain, e.g. ``spotify.com``.
        hashed_public_key: commitment from the proof (int, or bytes for SP1).
        framework: ZkFramework of the proof.
        client: HttpClient used for the archive request.
        archive_url: DKIM archive base url.
        relayer: RelayerUtils handle for Poseidon and Noir hashing.

    Returns:
        True if any published key hashes to the commitment.

    Raises:
        UnsupportedFrameworkError: for frameworks without a key hash.
    """
    backend = backend_for(framework)
    for p_value in await get_public_keys(sender_domain, client, archive_url):
        try:
            public_key = load_public_key(p_value)
        except ValueError as exc:
            logger.debug("Skipping unparsable DKIM key for %s: %s", sender_domain, exc)
            continue

        if isinstance(backend, Sp1):
            if sp1_pubkey_hash(public_key) == bytes(hashed_public_key):
                return True
        elif isinstance(backend, Circom):
            if circom_pubkey_hash(public_key, relayer) == int(hashed_public_key):
                return True
        elif noir_pubkey_hash(public_key, relayer) == int(hashed_public_key):
            return True
    return False


def _strip_0x(value: str) -> str:
    return value[2:] if value.startswith("0x") else value


async def verify_proof(proof, relayer=None, archive_url=None, snarkjs_bin=DEFAULT_SNARKJS_BIN) -> bool:
    """Verify a proof offline.

    Args:
        proof: the Proof to verify; its blueprint supplies domain and vkey.
        relayer: RelayerUtils handle, defaults to the process-wide one.
        archive_url: DKIM archive base url.
        snarkjs_bin: snarkjs executable for Circom verification.

    Returns:
        True if the pubkey commitment matches a published key and the
        proof verifies.

    Raises:
        BlueprintMismatchError: if the proof belongs to another blueprint.
    """
    blueprint = proof.blueprint
    if proof.props.blueprint_id != blueprint.props.id:
        raise BlueprintMismatchError(
            f"The proof was generated using a different blueprint: {proof.props.blueprint_id}"
        )

    framework = proof.props.zk_framework
    backend = backend_for(framework)
    relayer = get_relayer(relayer)
    pub_key_hash = proof.get_pub_key_hash()

    try:
        valid_pub_key = await verify_pub_key(
            blueprint.props.sender_domain,
            pub_key_hash,
            framework,
            blueprint.client,
            archive_url,
            relayer,
        )
    except Exception as exc:
        logger.warning("Failed to verify proofs public key: %s", exc)
        return False

    if not valid_pub_key:
        logger.warning(
            "Public key of proof is invalid. The domains of blueprint and proof don't match"
        )
        return False

    try:
        if isinstance(backend, Circom):
            vkey = await blueprint.get_vkey()
            return await asyncio.to_thread(
                groth16_verify,
                vkey,
                proof.props.public_outputs,
                proof.props.proof_data,
                snarkjs_bin,
            )
        if isinstance(backend, Sp1):
            return await relayer.verify_sp1_proof(
                bytes.fromhex(_strip_0x(proof.props.proof_data["hex"])),
                bytes.fromhex(_strip_0x(proof.props.public_outputs["outputs_hex"])),
                proof.props.sp1_vkey_hash,
            )
    except Exception as exc:
        logger.warning("Failed to verify proof: %s", exc)
        return False

    logger.warning("ZkFramework %s is not supported for verification", framework)
    return False
