# -*- encoding: utf-8 -*-
"""
ZK Email SDK
zkemail_sdk.proof module

The Proof entity and its status state machine.

A remote proof starts IN_PROGRESS and is polled until the registry reports
DONE or FAILED. A local proof is built DONE. Both terminal states are
cached: once reached, check_status() never touches the network again.

Polling backs off exponentially between calls, min(2s * 2**n, 10s). When the status
moves on from IN_PROGRESS the whole record is refetched and the props are
replaced in one assignment, so readers never observe a DONE proof with
stale in-progress fields.
"""

import asyncio
import dataclasses
import json
import logging
import time

from zkemail_sdk.blueprint import Blueprint
from zkemail_sdk.codec import get_pub_key_hash
from zkemail_sdk.errors import ConfigurationError, ProofStateError
from zkemail_sdk.types import ProofProps, ProofStatus, ZkFramework, server_date_to_datetime

logger = logging.getLogger(__name__)

DEFAULT_INITIAL_BACKOFF = 2.0  # seconds
DEFAULT_MAX_BACKOFF = 10.0  # seconds
DEFAULT_BACKOFF_FACTOR = 2.0


class StatusBackoff:
    """Spacing between consecutive status checks of one proof.

    The first call to wait() returns immediately. Call n+1 is held until
    min(initial * factor**n, max) seconds have passed since call n.

    Args:
        initial_backoff: Wait before the second check, in seconds.
        max_backoff: Upper bound of the wait, in seconds.
        backoff_factor: Multiplier applied after each check.
        clock: Monotonic time source, injectable for tests.
        sleep: Coroutine function used to wait, injectable for tests.
    """

    def __init__(
        self,
        initial_backoff=DEFAULT_INITIAL_BACKOFF,
        max_backoff=DEFAULT_MAX_BACKOFF,
        backoff_factor=DEFAULT_BACKOFF_FACTOR,
        clock=time.monotonic,
        sleep=asyncio.sleep,
    ):
        self._initial_backoff = initial_backoff
        self._max_backoff = max_backoff
        self._backoff_factor = backoff_factor
        self._clock = clock
        self._sleep = sleep
        self._attempt = 0
        self._last_checked = None

    def next_delay(self):
        """Full backoff interval that applies to the next check."""
        return min(
            self._initial_backoff * self._backoff_factor ** self._attempt,
            self._max_backoff,
        )

    async def wait(self):
        """Hold the caller until the next check is allowed, then record it."""
        if self._last_checked is not None:
            delay = self.next_delay()
            self._attempt += 1
            remaining = delay - (self._clock() - self._last_checked)
            if remaining > 0:
                logger.debug("Waiting %.1fs before next status check", remaining)
                await self._sleep(remaining)
        self._last_checked = self._clock()


def _maybe_json(value):
    """Registry fields are sometimes JSON encoded strings."""
    if not isinstance(value, str):
        return value
    try:
        return json.loads(value)
    except ValueError:
        return value


class Proof:
    """A generated proof. Exposes proof data and verifies proofs.

    Args:
        blueprint: The Blueprint that produced this proof.
        props: Complete ProofProps of the proof.
        backoff: Optional StatusBackoff used by check_status().

    Raises:
        ConfigurationError: if props have no id, or a local proof carries
            no proof data.
    """

    def __init__(self, blueprint, props: ProofProps, backoff=None):
        if props is None or not props.id:
            raise ConfigurationError("A proof must have an id")
        if props.is_local and props.proof_data is None:
            raise ConfigurationError("A local proof must be created with its proof data")
        self.blueprint = blueprint
        self.props = props
        self._backoff = backoff or StatusBackoff()

    @property
    def id(self):
        return self.props.id

    @property
    def status(self) -> ProofStatus:
        return self.props.status

    @property
    def client(self):
        return self.blueprint.client

    # -- registry ------------------------------------------------------------

    @staticmethod
    def response_to_proof_props(response: dict) -> ProofProps:
        """Build props from a ``GET /proof/{id}`` response body."""
        started_at = response.get("started_at")
        return ProofProps(
            id=response["id"],
            blueprint_id=response["blueprint_id"],
            input=response.get("input") or "",
            status=ProofStatus(response.get("status", ProofStatus.IN_PROGRESS)),
            zk_framework=ZkFramework.parse(response.get("zk_framework")),
            proof_data=_maybe_json(response.get("proof")),
            public_outputs=_maybe_json(response.get("public_outputs")),
            public_data=_maybe_json(response.get("public")),
            external_inputs=_maybe_json(response.get("external_inputs")),
            started_at=server_date_to_datetime(started_at),
            proved_at=server_date_to_datetime(response.get("proved_at")),
            is_local=False,
            sp1_vkey_hash=response.get("sp1_vkey_hash"),
        )

    @classmethod
    async def get_proof_by_id(cls, proof_id, client, config=None):
        """Fetch an existing proof and its blueprint from the registry."""
        try:
            response = await client.get(f"/proof/{proof_id}")
        except Exception:
            logger.error("Failed calling GET /proof/%s in get_proof_by_id", proof_id)
            raise
        props = cls.response_to_proof_props(response)
        blueprint = await Blueprint.get_blueprint_by_id(props.blueprint_id, client, config)
        return cls(blueprint, props)

    async def _fetch_props(self) -> ProofProps:
        response = await self.client.get(f"/proof/{self.props.id}")
        return self.response_to_proof_props(response)

    async def get_proof_data_download_link(self) -> str:
        """Return the url of a zip with all proof files."""
        if self.props.status != ProofStatus.DONE:
            raise ProofStateError("The proving is not done yet.")
        try:
            response = await self.client.get(f"/proof/files/{self.props.id}")
        except Exception:
            logger.error("Failed calling GET /proof/files/%s", self.props.id)
            raise
        return response["url"]

    # -- status state machine ------------------------------------------------

    async def check_status(self) -> ProofStatus:
        """Poll the registry once, honouring the backoff.

        Can be used in a ``while await proof.check_status() == IN_PROGRESS``
        loop, since every call after the first waits before polling.

        Returns:
            The current ProofStatus.
        """
        if self.props.status.is_terminal:
            return self.props.status

        await self._backoff.wait()

        try:
            response = await self.client.get(f"/proof/status/{self.props.id}")
        except Exception:
            logger.error("Failed calling GET /proof/status/%s", self.props.id)
            raise
        new_status = ProofStatus(response["status"])

        if (
            self.props.status in (ProofStatus.IN_PROGRESS, ProofStatus.DONE)
            and new_status != self.props.status
        ):
            logger.info("Proof %s moved to %s", self.props.id, new_status.name)
            self.props = await self._fetch_props()
            return self.props.status

        if new_status != self.props.status:
            self.props = dataclasses.replace(self.props, status=new_status)
        return new_status

    async def wait_for_completion(self, cancel=None) -> ProofStatus:
        """Poll until the proof leaves IN_PROGRESS.

        There is no timeout; wrap in ``asyncio.wait_for`` if one is needed.

        Args:
            cancel: Optional asyncio.Event. When set, polling stops with
                asyncio.CancelledError before the next status check.
        """
        while True:
            if cancel is not None and cancel.is_set():
                raise asyncio.CancelledError(f"Waiting for proof {self.props.id} was cancelled")
            if await self.check_status() != ProofStatus.IN_PROGRESS:
                return self.props.status

    # -- data ----------------------------------------------------------------

    def get_proof_data(self) -> dict:
        """Return proof data and public data of a finished proof."""
        if self.props.status != ProofStatus.DONE:
            raise ProofStateError("Cannot get proof data, proof is not Done")
        return {"proof_data": self.props.proof_data, "public_data": self.props.public_data}

    def get_pub_key_hash(self):
        return get_pub_key_hash(self.props.zk_framework, self.props.public_outputs)

    def pack_proof(self) -> str:
        """Serialise the props to a JSON string that unpack_proof() accepts."""
        return json.dumps(self.props.to_dict())

    @classmethod
    async def unpack_proof(cls, packed: str, client, config=None):
        """Rebuild a Proof from pack_proof() output.

        The blueprint is fetched from the registry by the packed blueprintId.
        """
        data = json.loads(packed)
        if not isinstance(data, dict) or not data.get("blueprintId"):
            raise ConfigurationError("Packed proof has no blueprintId")
        props = ProofProps.from_dict(data)
        blueprint = await Blueprint.get_blueprint_by_id(props.blueprint_id, client, config)
        return cls(blueprint, props)

    # -- verification --------------------------------------------------------

    async def verify(self, relayer=None) -> bool:
        """Verify the proof offline. See zkemail_sdk.verifier.verify_proof."""
        return await self.blueprint.verify_proof(self, relayer=relayer)

    async def verify_on_chain(self) -> bool:
        return await self.blueprint.verify_proof_on_chain(self)
