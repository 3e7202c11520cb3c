# -*- encoding: utf-8 -*-
"""
ZK Email SDK Test Configuration

Shared constants, stubs and fixtures for the SDK test suite.

- Registry: canned registry and archive routes served through
  httpx.MockTransport, recording every request it sees.
- StubRelayer: deterministic RelayerUtils with call recording.
- StubNoirBackend: Noir executor returning fixed public inputs.
- rsa_key: a real RSA key (cryptography) standing in for a DKIM key.

Async code is driven with asyncio.run() from synchronous tests.
"""

import base64
import json

import httpx
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from zkemail_sdk.backends import NoirBackend, NoirProof
from zkemail_sdk.blueprint import Blueprint
from zkemail_sdk.config import load_config
from zkemail_sdk.relayer import ParsedEmail, RelayerUtils
from zkemail_sdk.transport import HttpClient
from zkemail_sdk.types import (
    BlueprintProps,
    BlueprintStatus,
    DecomposedRegex,
    DecomposedRegexPart,
    ZkFramework,
)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

BASE_URL = "https://registry.test"
ARCHIVE_URL = "https://archive.test"
API_KEY = "test-api-key"
BLUEPRINT_ID = "0b6f4c39-1e5d-4a53-9d0b-3f4d6c1a2b7e"
SENDER_DOMAIN = "accounts.spotify.com"
PROOF_ID = "8c2f7a1e-5b4d-4e0a-9f36-2d1b7c9e4a10"
VERIFIER_ADDRESS = "0x7019a3bd4d9f0f0b4d1a2bcc2d6e9e2a0a3b5c6d"

TEST_CONFIG = {
    "ZKEMAIL_BASE_URL": BASE_URL,
    "ZKEMAIL_API_KEY": API_KEY,
    "ZKEMAIL_ARCHIVE_URL": ARCHIVE_URL,
    "ZKEMAIL_REMOTE_INITIAL_DELAY": "6",
    "ZKEMAIL_STATUS_INITIAL_BACKOFF": "2",
    "ZKEMAIL_STATUS_MAX_BACKOFF": "10",
}

HEADER = (
    "from:Spotify <no-reply@accounts.spotify.com>\r\n"
    "to:alice@example.com\r\n"
    "subject:New login to Spotify\r\n"
)
BODY = "Hi alice,\r\nWe noticed a new login to your account.\r\n"
DKIM_HEADER = f"v=1; a=rsa-sha256; c=relaxed/relaxed; d={SENDER_DOMAIN}; s=20230112; h=from:to:subject"
EML = f"DKIM-Signature: {DKIM_HEADER}\r\n{HEADER}\r\n{BODY}"

# Public signals of a real Circom proof for the two regexes below
CIRCOM_PUBLIC_SIGNALS = [
    "17685262804787528775822246417221886439009534120750582566515666856415572899671",
    "298758402699298466954246771709755242608",
    "314737872957615243291719964091922206813",
    "693071745690839634437479800507799058148939490638",
    "0",
    "0",
    "8302335936975073348041746242676053506062890133937399000989172097133178947272",
    "0",
    "13563782407157808",
    "0",
]

GROTH16_PROOF = {
    "pi_a": ["11", "12", "1"],
    "pi_b": [["21", "22"], ["23", "24"], ["1", "0"]],
    "pi_c": ["31", "32", "1"],
    "protocol": "groth16",
    "curve": "bn128",
}


def subject_regex(max_length=64):
    return DecomposedRegex(
        name="subject",
        location="header",
        max_length=max_length,
        parts=[
            DecomposedRegexPart(is_public=False, regex_def="(\r\n|^)subject:"),
            DecomposedRegexPart(is_public=True, regex_def="[^\r\n]+"),
            DecomposedRegexPart(is_public=False, regex_def="\r\n"),
        ],
    )


def recipient_regex():
    return DecomposedRegex(
        name="emailRecipient",
        location="header",
        max_length=64,
        is_hashed=True,
        parts=[
            DecomposedRegexPart(is_public=False, regex_def="(\r\n|^)to:([^\r\n]+<)?"),
            DecomposedRegexPart(is_public=True, regex_def="[a-zA-Z0-9._%+-]+@[a-zA-Z0-9_.-]+"),
            DecomposedRegexPart(is_public=False, regex_def=">?\r\n"),
        ],
    )


def make_blueprint_props(**overrides):
    """BlueprintProps of a compiled Circom blueprint, with overrides applied."""
    props = BlueprintProps(
        id=BLUEPRINT_ID,
        slug="zkemail/spotify-login",
        title="Spotify login",
        sender_domain=SENDER_DOMAIN,
        decomposed_regexes=[subject_regex(), recipient_regex()],
        client_zk_framework=ZkFramework.CIRCOM,
        server_zk_framework=ZkFramework.CIRCOM,
        email_header_max_length=1024,
        email_body_max_length=2048,
        client_status=BlueprintStatus.DONE,
        server_status=BlueprintStatus.DONE,
    )
    for key, value in overrides.items():
        setattr(props, key, value)
    return props


def blueprint_response(**overrides):
    """Body of ``GET /blueprint/{id}`` for the blueprint above."""
    data = {
        "id": BLUEPRINT_ID,
        "slug": "zkemail/spotify-login",
        "title": "Spotify login",
        "sender_domain": SENDER_DOMAIN,
        "decomposed_regexes": [subject_regex().to_dict(), recipient_regex().to_dict()],
        "client_zk_framework": "circom",
        "server_zk_framework": "circom",
        "email_header_max_length": 1024,
        "email_body_max_length": 2048,
        "client_status": 3,
        "server_status": 3,
        "verifier_contract_chain": 84532,
        "verifier_contract_address": VERIFIER_ADDRESS,
        "version": 1,
    }
    data.update(overrides)
    return data


def proof_response(status=2, **overrides):
    """Body of ``GET /proof/{id}``; JSON fields are strings as the registry sends them."""
    data = {
        "id": PROOF_ID,
        "blueprint_id": BLUEPRINT_ID,
        "input": "{}",
        "status": status,
        "zk_framework": "circom",
        "proof": json.dumps(GROTH16_PROOF),
        "public_outputs": json.dumps(CIRCOM_PUBLIC_SIGNALS),
        "public": json.dumps({"subject": ["New login to Spotify"]}),
        "started_at": {"seconds": 1700000000, "nanos": 0},
        "proved_at": {"seconds": 1700000060, "nanos": 500000000},
    }
    data.update(overrides)
    return data


def make_parsed_email(header=HEADER, body=BODY, domain=SENDER_DOMAIN):
    dkim = DKIM_HEADER.replace(SENDER_DOMAIN, domain)
    return ParsedEmail(
        canonicalized_header=f"dkim-signature:{dkim}\r\n{header}",
        canonicalized_body=body,
        cleaned_body=body,
        headers={"DKIM-Signature": [dkim], "Subject": ["New login to Spotify"]},
    )


# ---------------------------------------------------------------------------
# Registry stub
# ---------------------------------------------------------------------------

class Registry:
    """Canned HTTP routes keyed by (method, path).

    Each route holds a list of responses; they are served in order and the
    last one repeats. Unknown routes answer 404.
    """

    def __init__(self):
        self.routes = {}
        self.requests = []

    def add(self, method, path, *responses, status=200):
        entries = self.routes.setdefault((method, path), [])
        for body in responses or (None,):
            entries.append((status, body))
        return self

    def count(self, method, path):
        return sum(1 for r in self.requests if r.method == method and r.url.path == path)

    def handler(self, request):
        self.requests.append(request)
        entries = self.routes.get((request.method, request.url.path))
        if not entries:
            return httpx.Response(404, json={"error": f"no route for {request.url.path}"})
        status, body = entries.pop(0) if len(entries) > 1 else entries[0]
        if isinstance(body, Exception):
            raise body
        if isinstance(body, bytes):
            return httpx.Response(status, content=body)
        if isinstance(body, str):
            return httpx.Response(status, text=body)
        if body is None:
            return httpx.Response(status)
        return httpx.Response(status, json=body)

    def transport(self):
        return httpx.MockTransport(self.handler)

    def client(self, auth=None):
        return HttpClient(BASE_URL, api_key=API_KEY, auth=auth, transport=self.transport())


# ---------------------------------------------------------------------------
# Relayer and Noir stubs
# ---------------------------------------------------------------------------

class StubRelayer(RelayerUtils):
    """Deterministic relayer recording every call by name."""

    def __init__(self, parsed=None, circuit_inputs=None, noir_inputs=None, sp1_valid=True):
        self.parsed = parsed or make_parsed_email()
        self.circuit_inputs = circuit_inputs or {"emailHeader": ["102", "114"], "pubkey": ["1"]}
        self.noir_inputs = noir_inputs or {"header": {"storage": [1, 2]}, "empty": None}
        self.sp1_valid = sp1_valid
        self.calls = []
        self.last_args = {}

    async def parse_email(self, eml, ignore_body_hash_check=False):
        self.calls.append("parse_email")
        return self.parsed

    async def generate_circuit_inputs(self, eml, decomposed_regexes, external_inputs, params):
        self.calls.append("generate_circuit_inputs")
        self.last_args["generate_circuit_inputs"] = (decomposed_regexes, external_inputs, params)
        return self.circuit_inputs

    async def generate_noir_circuit_inputs(self, eml, regex_inputs, external_inputs, params):
        self.calls.append("generate_noir_circuit_inputs")
        self.last_args["generate_noir_circuit_inputs"] = (regex_inputs, external_inputs, params)
        return self.noir_inputs

    async def verify_sp1_proof(self, proof, outputs, vkey_hash):
        self.calls.append("verify_sp1_proof")
        self.last_args["verify_sp1_proof"] = (proof, outputs, vkey_hash)
        return self.sp1_valid

    def poseidon_large(self, chunks):
        self.calls.append("poseidon_large")
        return sum((i + 1) * c for i, c in enumerate(chunks)) % (1 << 254)

    def noir_pubkey_hash(self, modulus):
        self.calls.append("noir_pubkey_hash")
        return modulus % (1 << 254)


def noir_outputs(*parts):
    """Noir public inputs: 4 header slots followed by ``parts``."""
    outputs = ["0x2a", "0x01", "0x02", "0x00"]
    for part in parts:
        outputs.extend(part)
    return outputs


def noir_text(text, max_length, declared=None):
    """Byte slots for ``text`` padded to max_length, then the length slot."""
    raw = text.encode("utf-8")
    slots = [hex(b) for b in raw] + ["0x00"] * (max_length - len(raw))
    return slots + [hex(len(raw) if declared is None else declared)]


class StubNoirBackend(NoirBackend):
    def __init__(self, public_inputs, proof=b"\x01\x02\xff"):
        self.public_inputs = public_inputs
        self.proof = proof
        self.executed_with = None

    async def execute(self, circuit, inputs):
        self.executed_with = inputs
        return b"witness"

    async def generate_proof(self, circuit, witness):
        return NoirProof(proof=self.proof, public_inputs=list(self.public_inputs))


class StubWorker:
    """Stands in for LocalProverWorker, answering with a fixed result."""

    def __init__(self, proof=None, public_signals=None):
        self.proof = proof or dict(GROTH16_PROOF)
        self.public_signals = public_signals or list(CIRCOM_PUBLIC_SIGNALS)
        self.jobs = []

    async def prove(self, job):
        self.jobs.append(job)
        return self.proof, self.public_signals


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def config():
    return load_config(dict(TEST_CONFIG))


@pytest.fixture
def registry():
    return Registry()


@pytest.fixture
def relayer():
    return StubRelayer()


@pytest.fixture
def make_blueprint(registry, config):
    """Factory for a Blueprint wired to the registry stub."""
    def _make(**overrides):
        return Blueprint(make_blueprint_props(**overrides), registry.client(), config)
    return _make


@pytest.fixture(scope="session")
def rsa_key():
    """A 2048-bit RSA key standing in for a published DKIM key."""
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def dkim_p_value(rsa_key):
    """The ``p=`` tag value for rsa_key: base64 SubjectPublicKeyInfo DER."""
    der = rsa_key.public_key().public_bytes(
        serialization.Encoding.DER, serialization.PublicFormat.SubjectPublicKeyInfo
    )
    return base64.b64encode(der).decode("ascii")


def dkim_records(p_value, domain=SENDER_DOMAIN):
    return [
        {"domain": domain, "selector": "20230112", "value": f"v=DKIM1; k=rsa; p={p_value}"},
        {"domain": "other.example", "selector": "s1", "value": "v=DKIM1; k=rsa; p=AAAA"},
    ]


def json_bytes(value):
    return json.dumps(value).encode("utf-8")
