# -*- encoding: utf-8 -*-
"""
Tests for the prover module.

Verifies:
  - Framework and configuration errors are raised before any I/O
  - Local Circom proving hands a complete job to the worker and decodes
    the public signals
  - Local Noir proving uses the caller's backend and the compiled artifacts
  - The local proof counter is bumped in the background, failures only logged
  - Remote proving posts inputs (Circom) or the raw email (SP1) and polls
    to a terminal status
"""

import asyncio
import io
import json
import zipfile

import pytest

from tests.conftest import (
    BLUEPRINT_ID,
    EML,
    PROOF_ID,
    StubNoirBackend,
    StubWorker,
    noir_outputs,
    noir_text,
    proof_response,
    subject_regex,
)
from zkemail_sdk.backends import GenerateProofOptions
from zkemail_sdk.errors import (
    ConfigurationError,
    RemoteProvingError,
    UnsupportedFrameworkError,
)
from zkemail_sdk.prover import Prover
from zkemail_sdk.types import BlueprintStatus, ExternalInput, ExternalInputInput, ProofStatus, ZkFramework


class Sleeps:
    """No-op sleep that records requested durations."""

    def __init__(self):
        self.calls = []

    async def __call__(self, seconds):
        self.calls.append(seconds)


def _zip(files):
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        for name, content in files.items():
            archive.writestr(name, content)
    return buffer.getvalue()


def _post_body(registry):
    posts = [r for r in registry.requests if r.method == "POST"]
    assert len(posts) == 1
    return json.loads(posts[0].content)


def _add_circom_artifacts(registry):
    registry.add("GET", f"/blueprint/chunked-zkey/{BLUEPRINT_ID}", {"urls": [
        {"suffix": "b", "url": "https://files.test/circuit.zkeyb.gz"},
        {"suffix": "c", "url": "https://files.test/circuit.zkeyc.gz"},
    ]})
    registry.add("GET", f"/blueprint/wasm/{BLUEPRINT_ID}", {"url": "https://files.test/circuit.wasm"})


class TestPreconditions:
    """Checks that must fail before any network or worker activity."""

    def test_no_client_framework(self, registry, relayer, make_blueprint):
        blueprint = make_blueprint(client_zk_framework=ZkFramework.NONE)
        prover = Prover(blueprint, is_local=True, relayer=relayer)
        with pytest.raises(ConfigurationError, match="Blueprint has no client side proving setup"):
            asyncio.run(prover.generate_proof(EML))
        assert registry.requests == []
        assert relayer.calls == []

    def test_sp1_cannot_prove_locally(self, registry, relayer, make_blueprint):
        prover = Prover(make_blueprint(client_zk_framework=ZkFramework.SP1), is_local=True, relayer=relayer)
        with pytest.raises(UnsupportedFrameworkError):
            asyncio.run(prover.generate_proof(EML))
        assert registry.requests == []

    def test_noir_needs_backend(self, registry, relayer, make_blueprint):
        prover = Prover(make_blueprint(client_zk_framework=ZkFramework.NOIR), is_local=True, relayer=relayer)
        with pytest.raises(ConfigurationError, match="initialized Noir backend"):
            asyncio.run(prover.generate_proof(EML, options=GenerateProofOptions()))
        assert registry.requests == []

    def test_missing_external_inputs(self, registry, relayer, make_blueprint):
        blueprint = make_blueprint(external_inputs=[ExternalInput("code", 64)])
        prover = Prover(blueprint, is_local=True, relayer=relayer)
        with pytest.raises(ConfigurationError, match="requires external inputs: code"):
            asyncio.run(prover.generate_proof(EML))
        assert registry.requests == []
        assert relayer.calls == []

    def test_unsaved_blueprint(self, registry, relayer, make_blueprint):
        prover = Prover(make_blueprint(id=None), is_local=True, relayer=relayer)
        with pytest.raises(ConfigurationError, match="must be initialized"):
            asyncio.run(prover.generate_proof(EML))
        assert registry.requests == []

    def test_no_server_framework(self, registry, relayer, make_blueprint):
        prover = Prover(make_blueprint(server_zk_framework=ZkFramework.NONE), relayer=relayer)
        with pytest.raises(ConfigurationError, match="no remote ZkFramework"):
            asyncio.run(prover.generate_proof(EML))
        assert registry.requests == []

    def test_noir_cannot_prove_remotely(self, registry, relayer, make_blueprint):
        prover = Prover(make_blueprint(server_zk_framework=ZkFramework.NOIR), relayer=relayer)
        with pytest.raises(UnsupportedFrameworkError):
            asyncio.run(prover.generate_proof(EML))
        assert registry.requests == []


class TestLocalCircom:
    """Local Circom proving through the worker."""

    def test_generates_done_local_proof(self, registry, relayer, make_blueprint):
        _add_circom_artifacts(registry)
        registry.add("PATCH", f"/blueprint/inc-local-proofs/{BLUEPRINT_ID}")
        worker = StubWorker()
        prover = Prover(make_blueprint(), is_local=True, relayer=relayer, worker_factory=lambda: worker)

        async def run():
            proof = await prover.generate_proof(EML)
            await prover.drain_background_tasks()
            return proof

        proof = asyncio.run(run())

        assert proof.id.startswith("id-")
        assert proof.props.is_local
        assert proof.status == ProofStatus.DONE
        assert proof.props.zk_framework == ZkFramework.CIRCOM
        assert proof.props.public_data == {
            "subject": ["New login to Spotify"],
            "emailRecipient": [
                "8302335936975073348041746242676053506062890133937399000989172097133178947272"
            ],
        }
        assert proof.props.proved_at >= proof.props.started_at

        job = worker.jobs[0]
        assert [u.suffix for u in job.chunked_zkey_urls] == ["b", "c"]
        assert job.wasm_url == "https://files.test/circuit.wasm"
        assert json.loads(job.inputs) == relayer.circuit_inputs
        assert job.snarkjs_bin == "snarkjs"
        assert registry.count("PATCH", f"/blueprint/inc-local-proofs/{BLUEPRINT_ID}") == 1

    def test_external_inputs_recorded(self, registry, relayer, make_blueprint):
        _add_circom_artifacts(registry)
        registry.add("PATCH", f"/blueprint/inc-local-proofs/{BLUEPRINT_ID}")
        blueprint = make_blueprint(external_inputs=[ExternalInput("code", 64)])
        prover = Prover(blueprint, is_local=True, relayer=relayer, worker_factory=StubWorker)

        async def run():
            proof = await prover.generate_proof(EML, [ExternalInputInput("code", "42")])
            await prover.drain_background_tasks()
            return proof

        proof = asyncio.run(run())
        assert proof.props.external_inputs == {"code": "42"}
        _, externals, _ = relayer.last_args["generate_circuit_inputs"]
        assert externals == [{"name": "code", "value": "42", "max_length": 64}]

    def test_counter_failure_is_not_raised(self, registry, relayer, make_blueprint):
        _add_circom_artifacts(registry)
        registry.add("PATCH", f"/blueprint/inc-local-proofs/{BLUEPRINT_ID}", {"error": "down"}, status=503)
        prover = Prover(make_blueprint(), is_local=True, relayer=relayer, worker_factory=StubWorker)

        async def run():
            proof = await prover.generate_proof(EML)
            await prover.drain_background_tasks()
            return proof

        assert asyncio.run(run()).status == ProofStatus.DONE

    def test_zkey_needs_compiled_client_circuit(self, registry, relayer, make_blueprint):
        registry.add("GET", f"/blueprint/wasm/{BLUEPRINT_ID}", {"url": "https://files.test/circuit.wasm"})
        blueprint = make_blueprint(client_status=BlueprintStatus.IN_PROGRESS)
        worker = StubWorker()
        prover = Prover(blueprint, is_local=True, relayer=relayer, worker_factory=lambda: worker)
        with pytest.raises(ConfigurationError, match="not compiled"):
            asyncio.run(prover.generate_proof(EML))
        assert worker.jobs == []


class TestLocalNoir:
    """Local Noir proving with a caller-supplied backend."""

    def test_generates_done_local_proof(self, registry, relayer, make_blueprint):
        registry.add("GET", f"/blueprint/noir-circuit-json/{BLUEPRINT_ID}", {"url": "https://files.test/circuit.json"})
        registry.add("GET", "/circuit.json", {"abi": {}, "bytecode": "H4sIAAAA"})
        registry.add("GET", f"/blueprint/noir-regex-graphs/{BLUEPRINT_ID}", {"url": "https://files.test/graphs.zip"})
        registry.add("GET", "/graphs.zip", _zip({"subject_regex.json": json.dumps({"transitions": [[0, 1]]})}))
        registry.add("PATCH", f"/blueprint/inc-local-proofs/{BLUEPRINT_ID}")

        blueprint = make_blueprint(
            client_zk_framework=ZkFramework.NOIR,
            decomposed_regexes=[subject_regex()],
        )
        backend = StubNoirBackend(noir_outputs(noir_text("New login to Spotify", 64)))
        prover = Prover(blueprint, is_local=True, relayer=relayer)

        async def run():
            proof = await prover.generate_proof(EML, options=GenerateProofOptions(noir_backend=backend))
            await prover.drain_background_tasks()
            return proof

        proof = asyncio.run(run())

        assert proof.props.zk_framework == ZkFramework.NOIR
        assert proof.props.public_data == {"subject": ["New login to Spotify"]}
        assert proof.props.proof_data == "0102ff"
        assert proof.props.external_inputs == {}
        assert json.loads(proof.props.input) == {"header": {"storage": [1, 2]}}
        assert backend.executed_with == {"header": {"storage": [1, 2]}}

        regex_inputs, _, params = relayer.last_args["generate_noir_circuit_inputs"]
        assert regex_inputs[0]["regex_graph_json"] == json.dumps({"transitions": [[0, 1]]})
        assert params["max_header_length"] == 1024
        assert registry.count("PATCH", f"/blueprint/inc-local-proofs/{BLUEPRINT_ID}") == 1


class TestRemote:
    """Remote proving through the registry."""

    def test_circom_posts_inputs_and_polls(self, registry, relayer, make_blueprint):
        registry.add("POST", "/proof", proof_response(status=1, proof=None, public=None))
        registry.add("GET", f"/proof/status/{PROOF_ID}", {"status": 2})
        registry.add("GET", f"/proof/{PROOF_ID}", proof_response(status=2))
        sleeps = Sleeps()
        prover = Prover(make_blueprint(), relayer=relayer, sleep=sleeps)

        proof = asyncio.run(prover.generate_proof(EML))

        assert proof.status == ProofStatus.DONE
        assert proof.props.public_data == {"subject": ["New login to Spotify"]}
        assert sleeps.calls == [6.0]
        assert _post_body(registry) == {
            "blueprint_id": BLUEPRINT_ID,
            "external_inputs": {},
            "input": relayer.circuit_inputs,
        }

    def test_sp1_posts_raw_email(self, registry, relayer, make_blueprint):
        registry.add("POST", "/proof", proof_response(status=1, zk_framework="sp1"))
        prover = Prover(make_blueprint(server_zk_framework=ZkFramework.SP1), relayer=relayer)

        proof = asyncio.run(prover.generate_proof_request(EML, [ExternalInputInput("code", "7")]))

        assert proof.status == ProofStatus.IN_PROGRESS
        body = _post_body(registry)
        assert body["eml"] == EML
        assert body["external_inputs"] == {"code": "7"}
        assert "input" not in body
        assert relayer.calls == []

    def test_failed_remote_proof(self, registry, relayer, make_blueprint):
        registry.add("POST", "/proof", proof_response(status=1))
        registry.add("GET", f"/proof/status/{PROOF_ID}", {"status": 3})
        registry.add("GET", f"/proof/{PROOF_ID}", proof_response(status=3, proof=None))
        prover = Prover(make_blueprint(), relayer=relayer, sleep=Sleeps())

        with pytest.raises(RemoteProvingError) as exc_info:
            asyncio.run(prover.generate_proof(EML))
        assert exc_info.value.proof_id == PROOF_ID

    def test_remote_cancel(self, registry, relayer, make_blueprint):
        registry.add("POST", "/proof", proof_response(status=1))
        prover = Prover(make_blueprint(), relayer=relayer, sleep=Sleeps())

        async def run():
            cancel = asyncio.Event()
            cancel.set()
            await prover.generate_proof(EML, cancel=cancel)

        with pytest.raises(asyncio.CancelledError):
            asyncio.run(run())
        assert registry.count("GET", f"/proof/status/{PROOF_ID}") == 0
