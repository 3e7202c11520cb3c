# -*- encoding: utf-8 -*-
"""
ZK Email SDK
zkemail_sdk.prover module

Proof generation for a blueprint, locally or through the registry.

Local proving:
- Circom: inputs are generated in-process, the chunked proving key and the
  circuit wasm links are resolved concurrently, and the groth16 proof is
  computed in an isolated worker process (zkemail_sdk.worker).
- Noir: witness and proof are computed in-process with the caller's Noir
  backend, passed in GenerateProofOptions.
- SP1: not available locally.

Remote proving posts the Circom inputs, or the raw email for SP1, to the
registry, waits an initial delay and then polls the proof to a terminal
status.

Every framework and configuration check runs before any network or worker
activity.
"""

import asyncio
import json
import logging
import uuid
from datetime import datetime, timezone

from zkemail_sdk.backends import Circom, Noir, Sp1, backend_for
from zkemail_sdk.codec import parse_noir_public_outputs, parse_public_signals
from zkemail_sdk.errors import ConfigurationError, RemoteProvingError, UnsupportedFrameworkError
from zkemail_sdk.inputs import (
    add_max_length_to_external_inputs,
    build_proof_input_params,
    generate_noir_proof_inputs,
    generate_proof_inputs,
)
from zkemail_sdk.proof import Proof, StatusBackoff
from zkemail_sdk.types import ProofProps, ProofStatus, ZkFramework
from zkemail_sdk.worker import LocalProverWorker, ProvingJob

logger = logging.getLogger(__name__)


def _local_proof_id() -> str:
    return "id-" + uuid.uuid4().hex[:12]


def _now():
    return datetime.now(timezone.utc)


class Prover:
    """Generates proofs for one blueprint.

    Args:
        blueprint: the Blueprint to prove against.
        is_local: prove in this process instead of on the registry.
        relayer: optional RelayerUtils handle.
        worker_factory: callable returning a LocalProverWorker-like object
            with an async ``prove(job)``; one is created per Circom proof.
        sleep: coroutine function used for all waits.
    """

    def __init__(self, blueprint, is_local=False, relayer=None, worker_factory=None, sleep=asyncio.sleep):
        self.blueprint = blueprint
        self.is_local = is_local
        self.relayer = relayer
        self._worker_factory = worker_factory or LocalProverWorker
        self._sleep = sleep
        self._background_tasks = set()

    @property
    def config(self):
        return self.blueprint.config

    def _require_blueprint_id(self):
        if not self.blueprint.props.id:
            raise ConfigurationError(
                "Blueprint of Prover must be initialized in order to create a Proof"
            )
        return self.blueprint.props.id

    def _new_backoff(self):
        return StatusBackoff(
            initial_backoff=self.config["ZKEMAIL_STATUS_INITIAL_BACKOFF"],
            max_backoff=self.config["ZKEMAIL_STATUS_MAX_BACKOFF"],
            sleep=self._sleep,
        )

    def _with_max_length(self, external_inputs):
        props = self.blueprint.props
        if props.external_inputs and not external_inputs:
            names = ", ".join(e.name for e in props.external_inputs)
            raise ConfigurationError(
                f"The {props.slug} blueprint requires external inputs: {names}"
            )
        return add_max_length_to_external_inputs(external_inputs, props.external_inputs)

    async def generate_proof(self, eml, external_inputs=None, options=None, cancel=None) -> Proof:
        """Generate a proof for an email.

        Args:
            eml: raw email to prove against the blueprint.
            external_inputs: ExternalInputInput list.
            options: GenerateProofOptions, needed for local Noir proving.
            cancel: optional asyncio.Event that stops remote polling.

        Returns:
            A DONE Proof.

        Raises:
            RemoteProvingError: if the registry reports FAILED.
        """
        external_inputs = external_inputs or []
        if self.is_local:
            return await self.generate_local_proof(eml, external_inputs, options)

        proof = await self.generate_proof_request(eml, external_inputs)
        await self._sleep(self.config["ZKEMAIL_REMOTE_INITIAL_DELAY"])
        status = await proof.wait_for_completion(cancel)
        if status == ProofStatus.FAILED:
            raise RemoteProvingError(proof.id)
        return proof

    async def generate_proof_inputs(self, eml, external_inputs=None) -> str:
        """Circuit inputs for Circom and SP1 circuits, as a JSON string."""
        self._require_blueprint_id()
        with_max_length = self._with_max_length(external_inputs or [])
        try:
            inputs = await generate_proof_inputs(
                eml,
                self.blueprint.props.decomposed_regexes,
                with_max_length,
                build_proof_input_params(self.blueprint.props),
                self.relayer,
            )
        except Exception:
            logger.error("Failed to generate inputs for proof")
            raise
        logger.debug("Generated proof inputs for blueprint %s", self.blueprint.props.id)
        return inputs

    async def generate_proof_request(self, eml, external_inputs=None) -> Proof:
        """Start remote proving. The returned Proof is IN_PROGRESS."""
        logger.info("Generating remote proof")
        blueprint_id = self._require_blueprint_id()
        external_inputs = external_inputs or []
        framework = self.blueprint.props.server_zk_framework
        if framework == ZkFramework.NONE:
            raise ConfigurationError("This blueprint has no remote ZkFramework set up")
        backend = backend_for(framework)
        if isinstance(backend, Noir):
            raise UnsupportedFrameworkError(framework, "remote proving")
        self._with_max_length(external_inputs)

        request_data = {
            "blueprint_id": blueprint_id,
            "external_inputs": {ei.name: ei.value for ei in external_inputs},
        }
        if isinstance(backend, Circom):
            request_data["input"] = json.loads(await self.generate_proof_inputs(eml, external_inputs))
        elif isinstance(backend, Sp1):
            request_data["eml"] = eml

        try:
            response = await self.blueprint.client.post("/proof", request_data)
        except Exception:
            logger.error("Failed calling POST on /proof in generate_proof_request")
            raise

        props = Proof.response_to_proof_props(response)
        return Proof(self.blueprint, props, backoff=self._new_backoff())

    async def generate_local_proof(self, eml, external_inputs=None, options=None) -> Proof:
        """Prove in this process. The returned Proof is DONE and local."""
        self._require_blueprint_id()
        external_inputs = external_inputs or []
        framework = self.blueprint.props.client_zk_framework
        if framework == ZkFramework.NONE:
            raise ConfigurationError("Blueprint has no client side proving setup")

        backend = backend_for(framework, options)
        if isinstance(backend, Sp1):
            raise UnsupportedFrameworkError(framework, "local proving")
        if isinstance(backend, Noir) and backend.backend is None:
            raise ConfigurationError("You must pass an initialized Noir backend in the options")
        self._with_max_length(external_inputs)

        if isinstance(backend, Circom):
            proof = await self._generate_local_circom_proof(eml, external_inputs)
        elif isinstance(backend, Noir):
            proof = await self._generate_local_noir_proof(eml, external_inputs, backend)
        else:
            raise UnsupportedFrameworkError(framework, "local proving")

        self._schedule_inc_num_local_proofs()
        return proof

    async def _generate_local_circom_proof(self, eml, external_inputs) -> Proof:
        props = self.blueprint.props
        started_at = _now()
        inputs = await self.generate_proof_inputs(eml, external_inputs)

        chunked_zkey_urls, wasm_url = await asyncio.gather(
            self.blueprint.get_chunked_zkey_download_links(),
            self.blueprint.get_wasm_file_download_link(),
        )

        job = ProvingJob(
            chunked_zkey_urls=chunked_zkey_urls,
            inputs=inputs,
            wasm_url=wasm_url,
            snarkjs_bin=self.config["ZKEMAIL_SNARKJS_BIN"],
        )
        worker = self._worker_factory()
        proof_data, public_signals = await worker.prove(job)

        return Proof(self.blueprint, ProofProps(
            id=_local_proof_id(),
            blueprint_id=props.id,
            input=inputs,
            status=ProofStatus.DONE,
            zk_framework=ZkFramework.CIRCOM,
            proof_data=proof_data,
            public_outputs=public_signals,
            public_data=parse_public_signals(
                public_signals, props.decomposed_regexes, props.external_inputs
            ),
            external_inputs={ei.name: ei.value for ei in external_inputs},
            started_at=started_at,
            proved_at=_now(),
            is_local=True,
        ))

    async def _generate_local_noir_proof(self, eml, external_inputs, backend: Noir) -> Proof:
        props = self.blueprint.props
        started_at = _now()

        circuit, regex_graphs = await asyncio.gather(
            self.blueprint.get_noir_circuit(),
            self.blueprint.get_noir_regex_graphs(),
        )
        circuit_inputs, with_max_length = await generate_noir_proof_inputs(
            eml, props, regex_graphs, external_inputs, self.relayer
        )

        witness = await backend.backend.execute(circuit, circuit_inputs)
        result = await backend.backend.generate_proof(circuit, witness)

        public_data, external_inputs_proof = parse_noir_public_outputs(
            result.public_inputs,
            props.decomposed_regexes,
            props.external_inputs,
            with_max_length,
        )

        return Proof(self.blueprint, ProofProps(
            id=_local_proof_id(),
            blueprint_id=props.id,
            input=json.dumps(circuit_inputs),
            status=ProofStatus.DONE,
            zk_framework=ZkFramework.NOIR,
            proof_data=bytes(result.proof).hex(),
            public_outputs=list(result.public_inputs),
            public_data=public_data,
            external_inputs=external_inputs_proof,
            started_at=started_at,
            proved_at=_now(),
            is_local=True,
        ))

    # -- local proof counter -------------------------------------------------

    async def inc_num_local_proofs(self) -> None:
        blueprint_id = self._require_blueprint_id()
        try:
            await self.blueprint.client.patch(f"/blueprint/inc-local-proofs/{blueprint_id}")
        except Exception:
            logger.error("Failed calling PATCH on /blueprint/inc-local-proofs in inc_num_local_proofs")
            raise

    async def _inc_num_local_proofs_logged(self) -> None:
        try:
            await self.inc_num_local_proofs()
        except Exception as exc:
            logger.error("Failed to increase local proofs after generating proof: %s", exc)

    def _schedule_inc_num_local_proofs(self) -> None:
        """Bump the counter in the background; the caller never waits on it."""
        task = asyncio.get_running_loop().create_task(self._inc_num_local_proofs_logged())
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    async def drain_background_tasks(self) -> None:
        """Wait for pending counter updates, e.g. before closing the client."""
        if self._background_tasks:
            await asyncio.gather(*list(self._background_tasks))
