# -*- encoding: utf-8 -*-
"""
ZK Email SDK
zkemail_sdk.blueprint module

Blueprint resource: a registry entry describing which regexes to extract
from an email and which circuits were compiled for it.

Only the read side needed for proving and verification lives here:
fetching a blueprint, resolving artifact download links, and delegating
to the prover and verifier.
"""

import logging

from zkemail_sdk.chain import verify_proof_on_chain
from zkemail_sdk.config import load_config
from zkemail_sdk.errors import ConfigurationError
from zkemail_sdk.inputs import test_blueprint
from zkemail_sdk.types import BlueprintProps, BlueprintStatus, ChunkedZkeyUrl, ZkFramework
from zkemail_sdk.verifier import verify_proof

logger = logging.getLogger(__name__)


class Blueprint:
    """A blueprint as stored in the registry.

    Args:
        props: BlueprintProps of the blueprint.
        client: HttpClient for the registry.
        config: dict from load_config(); loaded from the environment if None.
    """

    def __init__(self, props: BlueprintProps, client, config=None):
        self.props = props
        self.client = client
        self.config = config if config is not None else load_config()

    @property
    def base_url(self):
        return self.client.base_url

    @classmethod
    async def get_blueprint_by_id(cls, blueprint_id, client, config=None):
        """Fetch a blueprint by id."""
        try:
            response = await client.get(f"/blueprint/{blueprint_id}")
        except Exception:
            logger.error("Failed calling GET /blueprint/%s in get_blueprint_by_id", blueprint_id)
            raise
        return cls(BlueprintProps.from_response(response), client, config)

    @classmethod
    async def get_blueprint_by_slug(cls, slug, client, config=None):
        """Fetch a blueprint by ``user/slug@v<version>``."""
        name, sep, version = slug.partition("@v")
        if not sep or not version:
            raise ConfigurationError("You must provide the blueprint version, e.g. 'user/slug@v1'")
        try:
            response = await client.get(f"/blueprint/by-slug/{name}/{version}")
        except Exception:
            logger.error("Failed calling GET /blueprint/by-slug/%s/%s", name, version)
            raise
        return cls(BlueprintProps.from_response(response), client, config)

    def _require_id(self):
        if not self.props.id:
            raise ConfigurationError("Blueprint was not saved yet")
        return self.props.id

    def _has_compiled_circom(self) -> bool:
        client_ok = (
            self.props.client_status == BlueprintStatus.DONE
            and self.props.client_zk_framework == ZkFramework.CIRCOM
        )
        server_ok = (
            self.props.server_status == BlueprintStatus.DONE
            and self.props.server_zk_framework == ZkFramework.CIRCOM
        )
        return client_ok or server_ok

    async def _get_url(self, path: str) -> str:
        try:
            response = await self.client.get(path)
        except Exception:
            logger.error("Failed calling GET %s", path)
            raise
        return response["url"]

    # -- circom artifacts ----------------------------------------------------

    async def get_chunked_zkey_download_links(self) -> list:
        """Links of the gzip-compressed proving key chunks, in order."""
        blueprint_id = self._require_id()
        if (
            self.props.client_status != BlueprintStatus.DONE
            or self.props.client_zk_framework != ZkFramework.CIRCOM
        ):
            raise ConfigurationError("The circuits are not compiled yet, nothing to download.")
        try:
            response = await self.client.get(f"/blueprint/chunked-zkey/{blueprint_id}")
        except Exception:
            logger.error("Failed calling GET /blueprint/chunked-zkey/%s", blueprint_id)
            raise
        return [ChunkedZkeyUrl.from_dict(u) for u in response["urls"]]

    async def get_wasm_file_download_link(self) -> str:
        blueprint_id = self._require_id()
        if not self._has_compiled_circom():
            raise ConfigurationError(
                "At least one circuit (client or server) must be compiled with Circom to download."
            )
        return await self._get_url(f"/blueprint/wasm/{blueprint_id}")

    async def get_vkey_file_download_link(self) -> str:
        blueprint_id = self._require_id()
        if not self._has_compiled_circom():
            raise ConfigurationError(
                "At least one circuit (client or server) must be compiled with Circom to download."
            )
        return await self._get_url(f"/blueprint/vkey/{blueprint_id}")

    async def get_vkey(self) -> str:
        """Verification key of the Circom circuit, as JSON text."""
        url = await self.get_vkey_file_download_link()
        return await self.client.download_text(url)

    # -- noir artifacts ------------------------------------------------------

    def _require_noir(self):
        if self.props.client_zk_framework != ZkFramework.NOIR:
            raise ConfigurationError("Only a noir blueprint has a noir circuit")

    async def _get_noir_link(self, kind: str) -> str:
        blueprint_id = self._require_id()
        self._require_noir()
        if self.props.client_status != BlueprintStatus.DONE:
            raise ConfigurationError("The circuits are not compiled yet, nothing to download.")
        return await self._get_url(f"/blueprint/{kind}/{blueprint_id}")

    async def get_noir_circuit(self) -> dict:
        """Compiled Noir program (ABI and bytecode)."""
        self._require_noir()
        url = await self._get_noir_link("noir-circuit-json")
        return await self.client.download_json(url)

    async def get_noir_regex_graphs(self) -> dict:
        """Compiled regex graphs, keyed ``{regex name}_regex.json``."""
        self._require_noir()
        url = await self._get_noir_link("noir-regex-graphs")
        return await self.client.download_and_unzip(url)

    # -- stats ---------------------------------------------------------------

    async def get_num_of_remote_proofs(self) -> int:
        blueprint_id = self._require_id()
        response = await self.client.get(f"/blueprint/count-remote-proofs/{blueprint_id}")
        return response["count"]

    # -- proving and verification --------------------------------------------

    def create_prover(self, is_local=False, relayer=None, worker_factory=None):
        """Return a Prover bound to this blueprint."""
        from zkemail_sdk.prover import Prover

        return Prover(self, is_local=is_local, relayer=relayer, worker_factory=worker_factory)

    async def verify_proof(self, proof, relayer=None) -> bool:
        return await verify_proof(
            proof,
            relayer=relayer,
            archive_url=self.config["ZKEMAIL_ARCHIVE_URL"],
            snarkjs_bin=self.config["ZKEMAIL_SNARKJS_BIN"],
        )

    async def verify_proof_on_chain(self, proof) -> bool:
        """Verify a proof with the deployed verifier contract."""
        return await verify_proof_on_chain(proof, rpc_url=self.config["ZKEMAIL_CHAIN_RPC_URL"])

    async def validate_email(self, eml: str, relayer=None) -> None:
        """Raise if the email does not satisfy the blueprint."""
        try:
            await test_blueprint(eml, self.props, False, relayer)
        except Exception as exc:
            logger.warning("Email is invalid: %s", exc)
            raise
