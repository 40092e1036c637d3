"""Shared fixtures: an in-memory catalog server behind httpx.MockTransport."""

import asyncio
import hashlib
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import httpx
import pytest

from corecatalog.core.config import ServiceConfig
from corecatalog.services.platform import HttpNetwork, LocalFileSystem, Platform
from corecatalog.storage.json_db_manager import JsonDatabaseManager

BASE = "https://example.com"
CATALOG_URL = f"{BASE}/catalog.json"

RBF_BYTES = b"r" * 1000
DB_BYTES = b"d" * 50
SYSTEM_DB_BYTES = b"s" * 64


def sha256_of(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


class FakeServer:
    """
    Serves JSON documents and binary blobs by absolute URL.

    A URL listed in ``gates`` is held until its event is set; requests
    cancelled while held are recorded in ``cancelled``.
    """

    def __init__(self):
        self.documents: Dict[str, Any] = {}
        self.blobs: Dict[str, bytes] = {}
        self.headers: Dict[str, Dict[str, str]] = {}
        self.failures: Dict[str, int] = {}
        self.gates: Dict[str, asyncio.Event] = {}
        self.requests: List[str] = []
        self.cancelled: List[str] = []

    async def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.requests.append(url)

        gate = self.gates.get(url)
        if gate is not None:
            try:
                await gate.wait()
            except asyncio.CancelledError:
                self.cancelled.append(url)
                raise

        if self.failures.get(url, 0) > 0:
            self.failures[url] -= 1
            return httpx.Response(500)
        headers = self.headers.get(url, {})
        if url in self.documents:
            return httpx.Response(200, json=self.documents[url], headers=headers)
        if url in self.blobs:
            return httpx.Response(200, content=self.blobs[url], headers=headers)
        return httpx.Response(404)


class RecordingPrompt:
    """Answers prompts from a script; cancels (choice 1) once the script runs out."""

    def __init__(self, answers: Optional[List[int]] = None):
        self.answers = list(answers or [])
        self.calls: List[tuple] = []

    async def choose(self, title: str, message: str, choices: Sequence[str]) -> int:
        self.calls.append((title, message, tuple(choices)))
        return self.answers.pop(0) if self.answers else 1


class FakeVerifier:
    def __init__(self, valid: bool = True):
        self.valid = valid
        self.calls: List[tuple] = []

    async def verify(self, path, signature: bytes) -> bool:
        self.calls.append((Path(path), signature))
        return self.valid


class RecordingUpgrader:
    def __init__(self):
        self.calls: List[tuple] = []

    async def upgrade(self, name: str, path, signature: bytes) -> None:
        self.calls.append((name, Path(path), signature))


def file_entry(url: str, data: bytes, type: Optional[str] = None, **extra) -> Dict[str, Any]:
    entry = {"url": url, "size": len(data), "sha256": sha256_of(data)}
    if type is not None:
        entry["type"] = type
    entry.update(extra)
    return entry


def core_doc(unique_name: str = "nes", version: str = "1.0", files: Optional[list] = None) -> Dict[str, Any]:
    if files is None:
        files = [
            file_entry("files/nes.rbf", RBF_BYTES, type="mister.core.rbf"),
            file_entry("files/nes.db", DB_BYTES, type="mister.core.db"),
        ]
    return {
        "name": unique_name.upper(),
        "uniqueName": unique_name,
        "releases": [{"version": version, "files": files}],
        "systems": "nes",
    }


def system_doc(unique_name: str = "nes") -> Dict[str, Any]:
    return {
        "name": "Nintendo Entertainment System",
        "uniqueName": unique_name,
        "db": file_entry(f"systems/{unique_name}.sqlite", SYSTEM_DB_BYTES),
    }


def catalog_doc(version: str = "1", **containers) -> Dict[str, Any]:
    doc = {"name": "Test Catalog", "uniqueName": "test", "version": version}
    doc.update(containers)
    return doc


def publish_default_catalog(server: FakeServer, version: str = "1", core_version: str = "1.0") -> None:
    """
    Catalog with a remote cores container (one core, one release of two
    files) and an inline systems container.
    """
    server.documents[CATALOG_URL] = catalog_doc(
        version,
        cores="cores.json",
        systems={"nes": system_doc()},
    )
    server.documents[f"{BASE}/cores.json"] = {"nes": core_doc(version=core_version)}
    server.blobs[f"{BASE}/files/nes.rbf"] = RBF_BYTES
    server.blobs[f"{BASE}/files/nes.db"] = DB_BYTES
    server.blobs[f"{BASE}/systems/nes.sqlite"] = SYSTEM_DB_BYTES


@pytest.fixture
def server():
    return FakeServer()


@pytest.fixture
def http_client(server):
    return httpx.AsyncClient(transport=httpx.MockTransport(server.handler))


@pytest.fixture
def prompt():
    return RecordingPrompt()


@pytest.fixture
def verifier():
    return FakeVerifier()


@pytest.fixture
def upgrader():
    return RecordingUpgrader()


@pytest.fixture
def platform(http_client, prompt, verifier, upgrader):
    return Platform(
        network=HttpNetwork(http_client),
        files=LocalFileSystem(),
        signatures=verifier,
        prompt=prompt,
        upgrader=upgrader,
    )


@pytest.fixture
def config(tmp_path):
    return ServiceConfig(data_dir=tmp_path / "data", download_root=tmp_path / "downloads")


@pytest.fixture
def store(config):
    db = JsonDatabaseManager(config.data_dir)
    db.initialize()
    return db
