# -*- encoding: utf-8 -*-
"""
ZK Email SDK
zkemail_sdk.chain module

On-chain verification of Circom proofs against a blueprint's deployed
verifier contract.

The verifier exposes a view function

    verify(uint8 proofType, uint256[2] a, uint256[2][2] b,
           uint256[2] c, uint256[n] signals)

that reverts on an invalid proof. The pi_b coordinates of a snarkjs proof
are swapped within each pair to match the pairing precompile's ordering.

RPC urls may be comma-separated. A connection failure moves on to the next
url; a revert is a verification failure and ends the check.
"""

import asyncio
import json
import logging

from web3 import Web3
from web3.exceptions import ContractLogicError

from zkemail_sdk.config import DEFAULTS
from zkemail_sdk.errors import ConfigurationError

logger = logging.getLogger(__name__)

GROTH16_PROOF_TYPE = 1


def get_verifier_contract_abi(signal_length: int) -> list:
    """ABI of the verifier's ``verify`` function for ``signal_length`` signals."""
    return [
        {
            "type": "function",
            "name": "verify",
            "inputs": [
                {"name": "proofType", "type": "uint8", "internalType": "ProofType"},
                {"name": "a", "type": "uint256[2]", "internalType": "uint256[2]"},
                {"name": "b", "type": "uint256[2][2]", "internalType": "uint256[2][2]"},
                {"name": "c", "type": "uint256[2]", "internalType": "uint256[2]"},
                {
                    "name": "signals",
                    "type": f"uint256[{signal_length}]",
                    "internalType": f"uint256[{signal_length}]",
                },
            ],
            "outputs": [],
            "stateMutability": "view",
        }
    ]


def build_verify_args(proof_data: dict, public_outputs: list) -> tuple:
    """Encode a snarkjs proof as ``(a, b, c, signals)`` call arguments."""
    pi_a = proof_data["pi_a"]
    pi_b = proof_data["pi_b"]
    pi_c = proof_data["pi_c"]
    a = [int(pi_a[0]), int(pi_a[1])]
    b = [
        [int(pi_b[0][1]), int(pi_b[0][0])],
        [int(pi_b[1][1]), int(pi_b[1][0])],
    ]
    c = [int(pi_c[0]), int(pi_c[1])]
    signals = [int(s) for s in public_outputs]
    return a, b, c, signals


def setup_web3(rpc_url: str) -> list:
    """Create one Web3 instance per comma-separated RPC url."""
    urls = [u.strip() for u in rpc_url.split(",") if u.strip()]
    if not urls:
        raise ConfigurationError("No RPC url configured for on-chain verification")
    return [Web3(Web3.HTTPProvider(url)) for url in urls]


def _load(value):
    if isinstance(value, (str, bytes)):
        return json.loads(value)
    return value


def _call_verify(w3, address, args):
    a, b, c, signals = args
    contract = w3.eth.contract(
        address=Web3.to_checksum_address(address),
        abi=get_verifier_contract_abi(len(signals)),
    )
    contract.functions.verify(GROTH16_PROOF_TYPE, a, b, c, signals).call()


async def verify_proof_on_chain(proof, rpc_url=None, endpoints=None) -> bool:
    """Verify a proof with the blueprint's verifier contract.

    Args:
        proof: a DONE Circom Proof.
        rpc_url: comma-separated RPC url(s), defaults to ZKEMAIL_CHAIN_RPC_URL.
        endpoints: optional list of Web3-like instances, overrides rpc_url.

    Returns:
        True if the contract call succeeds, False on revert or any error.

    Raises:
        ConfigurationError: if no verifier contract is deployed for the
            blueprint, or the proof has no data yet.
    """
    contract = proof.blueprint.props.verifier_contract
    if not contract or not contract.chain or not contract.address:
        raise ConfigurationError("No verifier contract deployed for the blueprint of this proof")

    if not proof.props.proof_data or not proof.props.public_outputs:
        raise ConfigurationError("No proof data generated yet")

    public_outputs = _load(proof.props.public_outputs)
    if not isinstance(public_outputs, list) or not public_outputs:
        raise ConfigurationError("Not a correct proof type")

    try:
        args = build_verify_args(_load(proof.props.proof_data), public_outputs)
    except (KeyError, IndexError, TypeError, ValueError) as exc:
        logger.error("Malformed proof data for on-chain verification: %s", exc)
        return False

    if endpoints is None:
        endpoints = setup_web3(rpc_url or DEFAULTS["ZKEMAIL_CHAIN_RPC_URL"])

    for w3 in endpoints:
        try:
            await asyncio.to_thread(_call_verify, w3, contract.address, args)
            return True
        except ContractLogicError as exc:
            logger.error("Error verifying proof on chain: %s", exc)
            return False
        except Exception as exc:
            logger.warning("RPC endpoint failed during on-chain verification: %s", exc)
    return False
