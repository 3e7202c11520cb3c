# -*- encoding: utf-8 -*-
"""
ZK Email SDK
zkemail_sdk.sdk module

Entry point wiring configuration, the registry client and the resources.

Usage:
    sdk = create_sdk()
    blueprint = await sdk.get_blueprint("zkemail/spotify@v1")
    prover = sdk.create_prover(blueprint)
    proof = await prover.generate_proof(eml)
    await sdk.close()
"""

import logging

from zkemail_sdk.blueprint import Blueprint
from zkemail_sdk.config import load_config
from zkemail_sdk.proof import Proof
from zkemail_sdk.transport import HttpClient

logger = logging.getLogger(__name__)


class ZkEmailSdk:
    """Facade over the registry resources.

    Args:
        client: HttpClient for the registry.
        config: dict from load_config().
        relayer: optional RelayerUtils handle passed to every prover.
    """

    def __init__(self, client: HttpClient, config: dict, relayer=None):
        self.client = client
        self.config = config
        self.relayer = relayer

    async def get_blueprint(self, slug_or_id: str) -> Blueprint:
        """Fetch a blueprint by ``user/slug@v<version>`` or by id."""
        if "@v" in slug_or_id:
            return await Blueprint.get_blueprint_by_slug(slug_or_id, self.client, self.config)
        return await Blueprint.get_blueprint_by_id(slug_or_id, self.client, self.config)

    async def get_proof(self, proof_id: str) -> Proof:
        return await Proof.get_proof_by_id(proof_id, self.client, self.config)

    async def unpack_proof(self, packed: str) -> Proof:
        return await Proof.unpack_proof(packed, self.client, self.config)

    def create_prover(self, blueprint: Blueprint, is_local=False, worker_factory=None):
        return blueprint.create_prover(
            is_local=is_local, relayer=self.relayer, worker_factory=worker_factory
        )

    async def close(self):
        await self.client.close()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        await self.close()


def create_sdk(config=None, auth=None, relayer=None, transport=None) -> ZkEmailSdk:
    """Build an SDK instance.

    Args:
        config: overrides applied on top of the environment (see load_config).
        auth: optional Auth token provider.
        relayer: optional RelayerUtils handle.
        transport: optional httpx transport, used by tests.
    """
    config = load_config(config)
    client = HttpClient(
        config["ZKEMAIL_BASE_URL"],
        api_key=config["ZKEMAIL_API_KEY"],
        auth=auth,
        timeout=config["ZKEMAIL_HTTP_TIMEOUT"],
        transport=transport,
    )
    logger.debug("Created SDK for %s", config["ZKEMAIL_BASE_URL"])
    return ZkEmailSdk(client, config, relayer)
