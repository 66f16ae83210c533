# tests/test_cli_runner.py
import json

import httpx
import main
import pytest
from core.llm_interface import InferenceClient
from game_master import (
    InMemoryCharacterProvider,
    InMemorySessionProvider,
    NarrationEngine,
)

import orchestration.cli_runner as cli_runner


@pytest.fixture
def demo_engine_factory(monkeypatch, narrator_settings, tavern_session):
    seen = []

    def handler(request):
        if request.url.path == "/api/tags":
            return httpx.Response(200, json={"models": [{"name": "story-model"}]})
        seen.append(json.loads(request.content))
        return httpx.Response(200, json={"response": "The mill wheel turns."})

    def factory(session_id):
        client = InferenceClient(
            config=narrator_settings, transport=httpx.MockTransport(handler)
        )
        sessions = InMemorySessionProvider(
            [tavern_session.model_copy(update={"session_id": session_id})]
        )
        return NarrationEngine(
            sessions,
            InMemoryCharacterProvider(),
            config=narrator_settings,
            client=client,
        )

    monkeypatch.setattr(cli_runner, "build_demo_engine", factory)
    monkeypatch.setattr(cli_runner, "setup_logging", lambda: None)
    return seen


def test_scene_flag_prints_narration(demo_engine_factory, capsys):
    assert main.main(["--scene", "Old Mill"]) == 0
    out = capsys.readouterr().out
    assert "The mill wheel turns." in out
    assert "LOCATION: Old Mill" in demo_engine_factory[0]["prompt"]


def test_health_flag_reports_backend(demo_engine_factory, capsys):
    assert main.main(["--health"]) == 0
    out = capsys.readouterr().out
    assert '"backend": true' in out


def test_no_flags_prints_config(demo_engine_factory, capsys):
    assert main.main([]) == 0
    assert '"in_flight_join": true' in capsys.readouterr().out


def test_engine_error_sets_exit_code(monkeypatch, narrator_settings, capsys):
    def factory(session_id):
        return NarrationEngine(
            InMemorySessionProvider(),
            config=narrator_settings,
            client=InferenceClient(
                config=narrator_settings,
                transport=httpx.MockTransport(lambda r: httpx.Response(200)),
            ),
        )

    monkeypatch.setattr(cli_runner, "build_demo_engine", factory)
    monkeypatch.setattr(cli_runner, "setup_logging", lambda: None)
    assert main.main(["--action", "I look around", "--session", "nope"]) == 1
    assert "context_unavailable" in capsys.readouterr().out
