"""Shared test fixtures for video-evidence-mcp."""

from __future__ import annotations

import asyncio
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from video_evidence_mcp.inference import InferenceRequest
from video_evidence_mcp.persistence import EvidenceDB
from video_evidence_mcp.pipeline import EvidenceEngine


@pytest.fixture(autouse=True, scope="session")
def _unwrap_fastmcp_tools():
    """Patch tool modules so FunctionTool objects become directly callable.

    FastMCP 2.x wraps @server.tool in FunctionTool (not callable); 3.x
    preserves the function. This fixture unwraps at the module level so
    tests can ``await tool_func(...)`` regardless of FastMCP version.
    """
    import importlib
    import pkgutil

    import video_evidence_mcp.tools as tools_pkg

    modules = []
    for info in pkgutil.walk_packages(tools_pkg.__path__, tools_pkg.__name__ + "."):
        modules.append(importlib.import_module(info.name))

    for mod in modules:
        for name in list(vars(mod)):
            obj = getattr(mod, name, None)
            if obj is not None and hasattr(obj, "fn") and not callable(obj):
                setattr(mod, name, obj.fn)


@pytest.fixture(autouse=True)
def _isolated_env(tmp_path, monkeypatch):
    """Dummy credentials, temp cache/DB paths, and a fresh config singleton."""
    import video_evidence_mcp.config as cfg_mod

    monkeypatch.setenv("GEMINI_API_KEY", "test-key-not-real")
    monkeypatch.setenv("EVIDENCE_USER_ID", "investigator-1")
    monkeypatch.setenv("EVIDENCE_CACHE_DIR", str(tmp_path / "cache"))
    monkeypatch.setenv("EVIDENCE_DB_PATH", str(tmp_path / "evidence.db"))
    monkeypatch.setenv("EVIDENCE_RETRY_BASE_DELAY", "0.01")
    monkeypatch.setenv("EVIDENCE_RETRY_MAX_DELAY", "0.02")
    monkeypatch.setattr(cfg_mod, "DEFAULT_ENV_PATH", tmp_path / "nonexistent.env")
    cfg_mod._config = None
    yield
    cfg_mod._config = None


class FakeStorage:
    """Storage collaborator double: records puts, can fail the first N calls."""

    def __init__(self, fail_times: int = 0) -> None:
        self.calls: list[tuple[str, Any]] = []
        self.fail_times = fail_times
        self.status_seen: list[str] = []
        self.engine: EvidenceEngine | None = None

    async def put(self, key, path) -> str:
        self.calls.append((key, path))
        if self.engine is not None:
            self.status_seen.append(self.engine.session.status)
        if self.fail_times > 0:
            self.fail_times -= 1
            raise RuntimeError("503 service unavailable")
        return f"https://files.example/{key}"


class FakeInference:
    """Inference collaborator double returning queued responses or raising them."""

    def __init__(self, *responses: Any) -> None:
        self.responses = list(responses)
        self.requests: list[InferenceRequest] = []
        self.status_seen: list[str] = []
        self.engine: EvidenceEngine | None = None
        self.gate: asyncio.Event | None = None

    async def analyze(self, request: InferenceRequest) -> Any:
        self.requests.append(request)
        if self.engine is not None:
            self.status_seen.append(self.engine.session.status)
        if self.gate is not None:
            await self.gate.wait()
        response = self.responses.pop(0) if self.responses else {"timestamps": []}
        if isinstance(response, Exception):
            raise response
        return response


def two_findings() -> dict:
    return {
        "description": "Two vehicles pass the gate.",
        "timestamps": [
            {"from": "00:00:10", "to": "00:00:12", "summary": "Red car enters", "confidence": 0.95},
            {"from": "01:05", "to": "01:09", "summary": "Blue van exits", "confidence": 0.8},
        ],
    }


@pytest.fixture()
def video_file(tmp_path):
    """A small fake .mp4 file."""
    f = tmp_path / "clip.mp4"
    f.write_bytes(b"\x00\x00\x00\x18ftypmp42" + b"frame" * 100)
    return f


@pytest.fixture()
def db(tmp_path):
    d = EvidenceDB(str(tmp_path / "store.db"))
    yield d
    d.close()


@pytest.fixture()
def fake_storage():
    return FakeStorage()


@pytest.fixture()
def fake_inference():
    return FakeInference(two_findings())


@pytest.fixture()
def engine(db, fake_storage, fake_inference):
    """Persistence-backed engine wired to fake storage and inference."""
    eng = EvidenceEngine(
        storage=fake_storage, inference=fake_inference, db=db, owner_id="investigator-1",
    )
    fake_storage.engine = eng
    fake_inference.engine = eng
    return eng


@pytest.fixture()
def mock_gemini_client():
    """Patch GeminiClient.get() and .generate() for unit tests."""
    with (
        patch("video_evidence_mcp.client.GeminiClient.get") as mock_get,
        patch(
            "video_evidence_mcp.client.GeminiClient.generate", new_callable=AsyncMock
        ) as mock_gen,
    ):
        client = MagicMock()
        mock_get.return_value = client
        yield {"get": mock_get, "generate": mock_gen, "client": client}
