from __future__ import annotations

from typing import Iterator

from fastapi.testclient import TestClient
import pytest

from blockflow.errors import ProviderAPIError
from blockflow.providers import ModelOptions, ModelResponse
from web.backend.main import app
from web.backend.routes.flows import _flows
from web.backend.services.executor import get_model_caller, get_sentiment_classifier


class _StubCaller:
    def __init__(self, text: str = "stub answer", fail: bool = False):
        self.text = text
        self.fail = fail
        self.prompts = []

    async def call(self, prompt: str, provider: str, options: ModelOptions) -> ModelResponse:
        self.prompts.append(prompt)
        if self.fail:
            raise ProviderAPIError("Incorrect API key provided", status_code=401, provider=provider)
        return ModelResponse(text=self.text, token_count=42)


class _StubClassifier:
    def __init__(self, answer: str = "positive", fail: bool = False):
        self.answer = answer
        self.fail = fail

    async def classify(self, text: str) -> str:
        if self.fail:
            raise ProviderAPIError("Invalid sentiment analysis result")
        return self.answer


@pytest.fixture(autouse=True)
def _isolated_store(tmp_path, monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    monkeypatch.setenv("BLOCKFLOW_FLOWS_DIR", str(tmp_path / "flows"))
    saved = dict(_flows)
    _flows.clear()
    yield
    _flows.clear()
    _flows.update(saved)
    app.dependency_overrides.clear()


def _summary_flow_body() -> dict:
    return {
        "name": "summarize",
        "nodes": [
            {"id": "start", "type": "start", "position": {"x": 0, "y": 0}, "data": {}},
            {"id": "txt", "type": "text_input", "position": {"x": 0, "y": 80}, "data": {"text": "Long article"}},
            {
                "id": "llm",
                "type": "llm",
                "position": {"x": 0, "y": 160},
                "data": {"provider": "openai", "prompt": "Summarize: {{input}} for {{getVar(\"reader\")}}"},
            },
            {"id": "out", "type": "output", "position": {"x": 0, "y": 240}, "data": {}},
        ],
        "edges": [
            {"id": "e1", "source": "start", "target": "txt"},
            {"id": "e2", "source": "txt", "target": "llm"},
            {"id": "e3", "source": "llm", "target": "out"},
        ],
    }


def test_flow_crud_persists_to_disk(tmp_path) -> None:
    with TestClient(app) as client:
        created = client.post("/api/flows", json=_summary_flow_body())
        assert created.status_code == 200, created.text
        flow = created.json()
        flow_id = flow["id"]
        assert flow["name"] == "summarize"
        assert flow["created_at"]
        assert (tmp_path / "flows" / f"{flow_id}.json").is_file()

        listed = client.get("/api/flows").json()
        assert [f["id"] for f in listed] == [flow_id]

        updated = client.put(f"/api/flows/{flow_id}", json={"name": "renamed"})
        assert updated.status_code == 200
        assert updated.json()["name"] == "renamed"
        assert len(updated.json()["nodes"]) == 4

        assert client.get(f"/api/flows/{flow_id}").json()["name"] == "renamed"

        deleted = client.delete(f"/api/flows/{flow_id}")
        assert deleted.json() == {"status": "deleted", "id": flow_id}
        assert not (tmp_path / "flows" / f"{flow_id}.json").exists()
        assert client.get(f"/api/flows/{flow_id}").status_code == 404


def test_run_flow_uses_injected_model_caller() -> None:
    caller = _StubCaller("Short summary")
    app.dependency_overrides[get_model_caller] = lambda: caller
    app.dependency_overrides[get_sentiment_classifier] = lambda: _StubClassifier()

    with TestClient(app) as client:
        flow_id = client.post("/api/flows", json=_summary_flow_body()).json()["id"]
        resp = client.post(f"/api/flows/{flow_id}/run", json={"variables": {"reader": "kids"}})

    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["success"] is True
    assert body["flowId"] == flow_id
    assert body["output"] == "Short summary"
    assert body["results"]["llm"]["output"] == "Short summary"
    assert body["results"]["llm"]["model"] == "openai"
    assert body["results"]["llm"]["tokens"] == 42
    assert "latencyMs" in body["results"]["llm"]
    assert body["results"]["out"]["output"] == "Short summary"
    assert caller.prompts == ["Summarize: Long article for kids"]


def test_run_flow_without_body() -> None:
    app.dependency_overrides[get_model_caller] = lambda: _StubCaller(fail=True)
    app.dependency_overrides[get_sentiment_classifier] = lambda: _StubClassifier()

    with TestClient(app) as client:
        flow_id = client.post("/api/flows", json=_summary_flow_body()).json()["id"]
        body = client.post(f"/api/flows/{flow_id}/run").json()

    assert body["success"] is True
    assert body["results"]["llm"]["output"] == "Error in LLM Processing block: Incorrect API key provided"
    assert body["results"]["out"]["output"] == "Long article"


def test_run_structurally_broken_flow_returns_error() -> None:
    app.dependency_overrides[get_model_caller] = lambda: _StubCaller()
    app.dependency_overrides[get_sentiment_classifier] = lambda: _StubClassifier()
    body = _summary_flow_body()
    body["edges"] = body["edges"][:2]

    with TestClient(app) as client:
        flow_id = client.post("/api/flows", json=body).json()["id"]
        resp = client.post(f"/api/flows/{flow_id}/run", json={})
        check = client.post(f"/api/flows/{flow_id}/validate")

    assert resp.status_code == 200
    assert resp.json()["success"] is False
    assert "Output Result (out)" in resp.json()["error"]

    report = check.json()
    assert report["valid"] is False
    assert "disconnected block" in report["errors"][0]


def test_validate_valid_flow() -> None:
    with TestClient(app) as client:
        flow_id = client.post("/api/flows", json=_summary_flow_body()).json()["id"]
        report = client.post(f"/api/flows/{flow_id}/validate").json()

    assert report == {"valid": True, "errors": [], "warnings": []}


def test_unknown_flow_returns_404() -> None:
    with TestClient(app) as client:
        assert client.get("/api/flows/missing").status_code == 404
        assert client.post("/api/flows/missing/run", json={}).status_code == 404
        assert client.delete("/api/flows/missing").status_code == 404


def test_llm_endpoint() -> None:
    app.dependency_overrides[get_model_caller] = lambda: _StubCaller("pong")

    with TestClient(app) as client:
        ok = client.post("/api/llm", json={"model": "groq", "prompt": "ping", "temperature": 0.1})
        missing = client.post("/api/llm", json={"model": "groq"})
        unknown = client.post("/api/llm", json={"model": "gemini", "prompt": "ping"})

    assert ok.status_code == 200
    body = ok.json()
    assert body["output"] == "pong"
    assert body["tokens"] == 42
    assert body["latencyMs"] >= 0
    assert body["cost"] >= 0
    assert missing.status_code == 400
    assert missing.json()["detail"] == "Missing model or prompt"
    assert unknown.status_code == 500
    assert unknown.json()["detail"] == "Unknown model: gemini"


def test_llm_endpoint_surfaces_provider_error() -> None:
    app.dependency_overrides[get_model_caller] = lambda: _StubCaller(fail=True)

    with TestClient(app) as client:
        resp = client.post("/api/llm", json={"model": "openai", "prompt": "ping"})

    assert resp.status_code == 500
    assert resp.json()["detail"] == "Incorrect API key provided"


def test_sentiment_endpoint() -> None:
    app.dependency_overrides[get_sentiment_classifier] = lambda: _StubClassifier("neutral")
    long_text = "x" * 150

    with TestClient(app) as client:
        ok = client.post("/api/sentiment", json={"text": long_text})
        empty = client.post("/api/sentiment", json={"text": ""})

    assert ok.json() == {"sentiment": "neutral", "text": "x" * 100 + "..."}
    assert empty.status_code == 400


def test_sentiment_endpoint_failure() -> None:
    app.dependency_overrides[get_sentiment_classifier] = lambda: _StubClassifier(fail=True)

    with TestClient(app) as client:
        resp = client.post("/api/sentiment", json={"text": "hello"})

    assert resp.status_code == 500
    assert resp.json()["detail"] == "Failed to analyze sentiment"


def test_providers_endpoints(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    monkeypatch.setenv("GROQ_API_KEY", "gk-test")

    with TestClient(app) as client:
        everything = client.get("/api/providers").json()
        configured = client.get("/api/providers", params={"include_unconfigured": "false"}).json()
        models = client.get("/api/providers/claude/models")
        missing = client.get("/api/providers/gemini/models")

    assert {p["name"] for p in everything} == {"openai", "groq", "claude", "mixtral", "lmstudio"}
    assert "openai" not in {p["name"] for p in configured}
    assert "groq" in {p["name"] for p in configured}
    assert models.json() == ["claude-3-haiku-20240307"]
    assert missing.status_code == 404


def test_health() -> None:
    with TestClient(app) as client:
        resp = client.get("/api/health")
    assert resp.json() == {"status": "healthy", "service": "blockflow-visual-editor"}
