# -*- encoding: utf-8 -*-
"""
ZK Email SDK
zkemail_sdk.snarkjs module

Groth16 proving and verification through the snarkjs command line.

Two entry points:
- groth16_full_prove(): witness generation plus proving, run by the worker
- groth16_verify(): offline verification of a Circom proof

Both are blocking and are meant to run in the worker process or in a
thread (see asyncio.to_thread in the verifier).
"""

import json
import logging
import subprocess
import tempfile
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_SNARKJS_BIN = "snarkjs"
PROVE_TIMEOUT = 1800  # large circuits take many minutes on a laptop
VERIFY_TIMEOUT = 120


def groth16_full_prove(
    inputs: dict,
    wasm_path,
    zkey_path,
    workdir,
    snarkjs_bin=DEFAULT_SNARKJS_BIN,
) -> tuple[dict, list]:
    """Compute the witness and a Groth16 proof.

    Args:
        inputs: circuit input map.
        wasm_path: path of the compiled circuit wasm.
        zkey_path: path of the proving key.
        workdir: directory for input and output files.
        snarkjs_bin: snarkjs executable.

    Returns:
        (proof, public_signals) as produced by snarkjs.

    Raises:
        subprocess.CalledProcessError: if snarkjs exits non-zero.
    """
    workdir = Path(workdir)
    input_path = workdir / "input.json"
    proof_path = workdir / "proof.json"
    public_path = workdir / "public.json"
    input_path.write_text(json.dumps(inputs))

    subprocess.run(
        [
            str(snarkjs_bin),
            "groth16",
            "fullprove",
            str(input_path),
            str(wasm_path),
            str(zkey_path),
            str(proof_path),
            str(public_path),
        ],
        capture_output=True,
        text=True,
        check=True,
        timeout=PROVE_TIMEOUT,
    )

    proof = json.loads(proof_path.read_text())
    public_signals = json.loads(public_path.read_text())
    return proof, public_signals


def groth16_verify(vkey, public_signals, proof, snarkjs_bin=DEFAULT_SNARKJS_BIN) -> bool:
    """Verify a Groth16 proof.

    Args:
        vkey: verification key, as dict or JSON string.
        public_signals: list of decimal strings, or JSON string.
        proof: proof object with pi_a, pi_b, pi_c, or JSON string.
        snarkjs_bin: snarkjs executable.

    Returns:
        True if snarkjs accepts the proof.
    """
    with tempfile.TemporaryDirectory(prefix="zkemail-verify-") as tmp:
        tmp = Path(tmp)
        files = {}
        for name, value in (("vkey", vkey), ("public", public_signals), ("proof", proof)):
            path = tmp / f"{name}.json"
            path.write_text(value if isinstance(value, str) else json.dumps(value))
            files[name] = str(path)

        result = subprocess.run(
            [
                str(snarkjs_bin),
                "groth16",
                "verify",
                files["vkey"],
                files["public"],
                files["proof"],
            ],
            capture_output=True,
            text=True,
            timeout=VERIFY_TIMEOUT,
        )

    if result.returncode != 0:
        logger.info("snarkjs rejected proof: %s", result.stdout.strip() or result.stderr.strip())
        return False
    return True
