from __future__ import annotations

import time
from typing import Any

import pytest
from fastapi.testclient import TestClient

from cmdexec.api.app import create_app
from cmdexec.config.load_config import ConfigError
from cmdexec.runtime.cancellation import KillOutcome
from cmdexec.runtime.service import ExecutionService


@pytest.fixture(autouse=True)
def _quiet_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CMDEXEC_CONFIGURE_LOGGING", "0")


def _poll(client: TestClient, key: str, *, until: set[str], timeout_s: float = 10.0) -> dict[str, Any]:
    deadline = time.monotonic() + timeout_s
    while time.monotonic() < deadline:
        resp = client.post("/api/v1/status", json={"key": key})
        assert resp.status_code == 200
        execution = resp.json()["execution"]
        if execution["state"] in until:
            return execution
        time.sleep(0.05)
    raise AssertionError(f"state never reached {until}")


def test_submit_echo_and_poll_until_completed(make_config) -> None:  # noqa: ANN001
    app = create_app(make_config())
    with TestClient(app) as client:
        resp = client.post("/api/v1/request", json={"command": "echo", "args": ["hi"]})
        assert resp.status_code == 200
        key = resp.json()["key"]
        assert key

        execution = _poll(client, key, until={"completed", "timed_out", "killed"})
        assert execution["state"] == "completed"
        assert execution["exit_code"] == 0
        assert "hi" in execution["output"]
        assert execution["ended_at"] is not None
        assert execution["terminated"] is True
        assert execution["killed"] is False
        assert execution["key"] == key

        rest = client.get(f"/api/v1/executions/{key}")
        assert rest.status_code == 200
        assert rest.json()["execution"] == execution


def test_unknown_command_is_rejected_without_record(make_config) -> None:  # noqa: ANN001
    app = create_app(make_config())
    with TestClient(app) as client:
        resp = client.post("/api/v1/request", json={"command": "rm", "args": ["-rf", "/"]})
        assert resp.status_code == 404
        err = resp.json()["error"]
        assert err["code"] == "unknown_command"
        assert err["details"]["command"] == "rm"

        listing = client.get("/api/v1/executions")
        assert listing.status_code == 200
        assert listing.json()["count"] == 0


def test_command_name_must_match_whitelist_exactly(make_config) -> None:  # noqa: ANN001
    app = create_app(make_config())
    with TestClient(app) as client:
        for command in (" echo", "echo ", "\techo\n", "ECHO", "./echo"):
            resp = client.post("/api/v1/request", json={"command": command})
            assert resp.status_code == 404, command
            err = resp.json()["error"]
            assert err["code"] == "unknown_command"
            assert err["details"]["command"] == command

        assert client.get("/api/v1/executions").json()["count"] == 0


def test_malformed_body_is_invalid_argument(make_config) -> None:  # noqa: ANN001
    app = create_app(make_config())
    with TestClient(app) as client:
        resp = client.post(
            "/api/v1/request",
            content=b"{not json",
            headers={"content-type": "application/json"},
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "invalid_argument"

        resp2 = client.post("/api/v1/request", json={"args": ["hi"]})
        assert resp2.status_code == 400


def test_status_and_kill_unknown_key_are_not_found(make_config) -> None:  # noqa: ANN001
    app = create_app(make_config())
    with TestClient(app) as client:
        s = client.post("/api/v1/status", json={"key": "exec_nope"})
        assert s.status_code == 404
        assert s.json()["error"]["code"] == "not_found"

        assert s.json()["error"]["details"] == {"key": "exec_nope"}

        k = client.post("/api/v1/kill", json={"key": "exec_nope"})
        assert k.status_code == 404
        assert k.json()["error"]["code"] == "not_found"

        rest = client.get("/api/v1/executions/exec_nope")
        assert rest.status_code == 404
        assert rest.json()["error"]["details"] == {"key": "exec_nope"}


def test_kill_failure_maps_to_kill_failed(make_config, monkeypatch: pytest.MonkeyPatch) -> None:  # noqa: ANN001
    monkeypatch.setattr(ExecutionService, "kill", lambda self, key: KillOutcome.FAILED)
    app = create_app(make_config())
    with TestClient(app) as client:
        resp = client.post("/api/v1/kill", json={"key": "exec_any"})
        assert resp.status_code == 500
        err = resp.json()["error"]
        assert err["code"] == "kill_failed"
        assert err["details"] == {"key": "exec_any"}


def test_long_command_times_out(make_config) -> None:  # noqa: ANN001
    app = create_app(make_config(timeout_s=1))
    with TestClient(app) as client:
        key = client.post("/api/v1/request", json={"command": "sleep", "args": ["30"]}).json()["key"]

        time.sleep(2)
        execution = _poll(client, key, until={"timed_out", "completed", "killed"}, timeout_s=5)
        assert execution["state"] == "timed_out"
        assert execution["ended_at"] is not None


def test_kill_then_kill_again(make_config) -> None:  # noqa: ANN001
    app = create_app(make_config(timeout_s=30))
    with TestClient(app) as client:
        key = client.post("/api/v1/request", json={"command": "sleep", "args": ["30"]}).json()["key"]

        # A kill before the process handle exists is a no-op; retry until it lands.
        deadline = time.monotonic() + 5
        first: dict[str, Any] = {}
        while time.monotonic() < deadline:
            resp = client.post("/api/v1/kill", json={"key": key})
            assert resp.status_code == 200
            first = resp.json()
            if first["outcome"] == "killed":
                break
            time.sleep(0.02)
        assert first["outcome"] == "killed"
        assert first["message"] == "killed!"

        second = client.post("/api/v1/kill", json={"key": key})
        assert second.status_code == 200
        assert second.json()["outcome"] == "already_terminal"
        assert second.json()["message"] == "already killed"

        execution = client.post("/api/v1/status", json={"key": key}).json()["execution"]
        assert execution["state"] == "killed"
        assert execution["killed"] is True
        assert execution["ended_at"] is not None

        rest = client.post(f"/api/v1/executions/{key}/kill")
        assert rest.status_code == 200
        assert rest.json()["outcome"] == "already_terminal"


def test_finished_execution_is_evicted_after_retention(make_config) -> None:  # noqa: ANN001
    app = create_app(make_config(cache_time_s=0, sweep_interval_s=0.1))
    with TestClient(app) as client:
        key = client.post("/api/v1/request", json={"command": "echo", "args": ["bye"]}).json()["key"]

        deadline = time.monotonic() + 10
        status_code = 200
        while time.monotonic() < deadline:
            status_code = client.post("/api/v1/status", json={"key": key}).status_code
            if status_code == 404:
                break
            time.sleep(0.05)
        assert status_code == 404


def test_list_executions_filters_by_state(make_config) -> None:  # noqa: ANN001
    app = create_app(make_config())
    with TestClient(app) as client:
        key = client.post("/api/v1/request", json={"command": "echo", "args": ["x"]}).json()["key"]
        _poll(client, key, until={"completed"})

        done = client.get("/api/v1/executions", params={"state": "completed"}).json()
        assert [item["key"] for item in done["items"]] == [key]
        running = client.get("/api/v1/executions", params={"state": "running"}).json()
        assert running["count"] == 0

        bad = client.get("/api/v1/executions", params={"state": "bogus"})
        assert bad.status_code == 400


def test_health_and_sweeper_endpoints(make_config) -> None:  # noqa: ANN001
    app = create_app(make_config())
    with TestClient(app) as client:
        assert client.get("/api/v1/healthz").json() == {"status": "ok"}
        assert client.get("/api/v1/version").json()["service"] == "cmdexec"

        sys_resp = client.get("/api/v1/system/sweeper").json()
        assert sys_resp["enabled"] is True
        assert sys_resp["sweeper"]["running"] is True
        assert set(sys_resp["executions_by_state"]) == {"pending", "running", "completed", "timed_out", "killed"}


def test_shutdown_kills_running_executions(make_config) -> None:  # noqa: ANN001
    app = create_app(make_config(timeout_s=30))
    with TestClient(app) as client:
        key = client.post("/api/v1/request", json={"command": "sleep", "args": ["30"]}).json()["key"]
        _poll(client, key, until={"running"})
        service = app.state.execution_service
        deadline = time.monotonic() + 5
        while time.monotonic() < deadline and not service.registry.with_live(key, lambda r: r.handle is not None):
            time.sleep(0.02)

    assert service.registry.get(key).state.value == "killed"


def test_bad_config_aborts_startup(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:  # noqa: ANN001
    monkeypatch.setenv("CMDEXEC_CONFIG_PATH", str(tmp_path / "missing.toml"))
    app = create_app()
    with pytest.raises(ConfigError):
        with TestClient(app):
            pass
