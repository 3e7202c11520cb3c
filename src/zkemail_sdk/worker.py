# -*- encoding: utf-8 -*-
"""
ZK Email SDK
zkemail_sdk.worker module

Isolated worker process for local Circom proving.

The dispatching event loop and the prover share no memory. A job is sent
once, the worker answers with a stream of events and exactly one terminal
event:

    job:    {"chunked_zkey_urls": [{"suffix", "url"}, ...],
             "inputs": "<json>", "wasm_url": "...", "snarkjs_bin": "..."}
    events: {"type": "message" | "progress", "message": "..."}
            {"type": "result", "proof": {...}, "public_signals": [...]}
            {"type": "error", "error": "..."}

The worker downloads the gzip-compressed proving key chunks, concatenates
them in the order given, downloads the circuit wasm and runs
``snarkjs groth16 fullprove``. The process is torn down after the terminal
event on both the success and the error path.
"""

import asyncio
import gzip
import json
import logging
import multiprocessing
import queue as queue_module
import tempfile
from dataclasses import dataclass, field
from pathlib import Path

import httpx

from zkemail_sdk.errors import WorkerError
from zkemail_sdk.snarkjs import DEFAULT_SNARKJS_BIN, groth16_full_prove

logger = logging.getLogger(__name__)

DOWNLOAD_ATTEMPTS = 3
DOWNLOAD_TIMEOUT = 300.0
CIRCUIT_NAME = "circuit"


@dataclass
class ProvingJob:
    """The single inbound message of a worker."""

    chunked_zkey_urls: list = field(default_factory=list)
    inputs: str = "{}"
    wasm_url: str = ""
    snarkjs_bin: str = DEFAULT_SNARKJS_BIN

    def to_message(self) -> dict:
        return {
            "chunked_zkey_urls": [
                {"suffix": c.suffix, "url": c.url} if hasattr(c, "url") else dict(c)
                for c in self.chunked_zkey_urls
            ],
            "inputs": self.inputs,
            "wasm_url": self.wasm_url,
            "snarkjs_bin": self.snarkjs_bin,
        }


def download_with_retries(client: httpx.Client, url: str, attempts: int = DOWNLOAD_ATTEMPTS) -> bytes:
    for attempt in range(1, attempts + 1):
        logger.debug("Download attempt %d for %s", attempt, url)
        try:
            response = client.get(url)
        except httpx.HTTPError as exc:
            logger.warning("Download attempt %d for %s failed: %s", attempt, url, exc)
            continue
        if response.status_code == 200:
            return response.content
    raise WorkerError(f"Error downloading {url} after {attempts} attempts")


def run_job(job: dict, emit, http_client=None) -> None:
    """Execute one proving job, reporting through ``emit``.

    Args:
        job: job message as produced by ProvingJob.to_message().
        emit: callable receiving each event dict.
        http_client: optional httpx.Client used for downloads.

    Raises:
        WorkerError: if a download fails or no proving key was assembled.
    """
    emit({"type": "message", "message": "Worker started"})
    client = http_client or httpx.Client(timeout=DOWNLOAD_TIMEOUT, follow_redirects=True)
    try:
        with tempfile.TemporaryDirectory(prefix="zkemail-prove-") as workdir:
            workdir = Path(workdir)
            zkey_path = workdir / f"{CIRCUIT_NAME}.zkey"
            wasm_path = workdir / f"{CIRCUIT_NAME}.wasm"

            emit({"type": "progress", "message": "Downloading zkeys"})
            with open(zkey_path, "wb") as zkey:
                for chunk in job["chunked_zkey_urls"]:
                    compressed = download_with_retries(client, chunk["url"])
                    zkey.write(gzip.decompress(compressed))
            if zkey_path.stat().st_size == 0:
                raise WorkerError("ZKey file not found - no chunks were downloaded successfully")

            emit({"type": "progress", "message": "Downloading the wasm file"})
            wasm_path.write_bytes(download_with_retries(client, job["wasm_url"]))
            emit({"type": "message", "message": "Download complete"})

            emit({"type": "progress", "message": "Proving"})
            proof, public_signals = groth16_full_prove(
                json.loads(job["inputs"]),
                wasm_path,
                zkey_path,
                workdir,
                job.get("snarkjs_bin") or DEFAULT_SNARKJS_BIN,
            )
    finally:
        if http_client is None:
            client.close()

    emit({"type": "result", "proof": proof, "public_signals": public_signals})


def worker_main(job: dict, events) -> None:
    """Process entry point. Every failure becomes an ``error`` event."""
    try:
        run_job(job, events.put)
    except Exception as exc:
        logger.exception("Local proving failed")
        events.put({"type": "error", "error": str(exc)})


def _next_event(events, timeout):
    try:
        if timeout:
            return events.get(timeout=timeout)
        return events.get_nowait()
    except queue_module.Empty:
        return None


class LocalProverWorker:
    """Request/response channel to one isolated proving process.

    One worker serves one job; create a new instance per proof.

    Args:
        on_event: optional callback for ``message`` and ``progress`` events.
        poll_interval: seconds to block on the event queue per poll.
        target: process entry point, ``worker_main`` unless overridden.
    """

    def __init__(self, on_event=None, poll_interval=0.5, target=worker_main):
        self._on_event = on_event
        self._poll_interval = poll_interval
        self._target = target
        self._context = multiprocessing.get_context("spawn")

    async def prove(self, job: ProvingJob) -> tuple[dict, list]:
        """Send the job and wait for its terminal event.

        Returns:
            (proof, public_signals)

        Raises:
            WorkerError: on an ``error`` event, or if the process exits
                without a terminal event.
        """
        events = self._context.Queue()
        process = self._context.Process(
            target=self._target, args=(job.to_message(), events), daemon=True
        )
        loop = asyncio.get_running_loop()
        process.start()
        logger.debug("Started proving worker pid=%s", process.pid)
        try:
            while True:
                event = await loop.run_in_executor(
                    None, _next_event, events, self._poll_interval
                )
                if event is None:
                    if process.is_alive():
                        continue
                    event = _next_event(events, self._poll_interval)
                    if event is None:
                        raise WorkerError(
                            f"Worker exited with code {process.exitcode} without a result"
                        )

                kind = event.get("type")
                if kind == "result":
                    return event["proof"], event["public_signals"]
                if kind == "error":
                    raise WorkerError(event.get("error") or "Unknown worker error")
                logger.info("Worker %s: %s", kind, event.get("message"))
                if self._on_event is not None:
                    self._on_event(event)
        finally:
            if process.is_alive():
                process.terminate()
            process.join(timeout=5)
            events.close()
