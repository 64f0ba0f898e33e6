"""
Command-line request loading.
"""

import json

import pytest

from Simulation.errors import ConfigurationError
from tools.run_simulation import load_request, main

from conftest import request_dict


def write(tmp_path, payload, name="request.json"):
    path = tmp_path / name
    path.write_text(payload if isinstance(payload, str) else json.dumps(payload), encoding="utf-8")
    return path


class TestLoadRequest:
    def test_bare_request_with_overrides(self, tmp_path):
        path = write(tmp_path, request_dict([], {"enabled": False}, options={"batchSize": 10}))
        data = load_request(path, batch_size=3, timeout_ms=2000)
        assert data["options"] == {"batchSize": 3, "timeoutMs": 2000}
        assert data["requestId"] == "req-1"

    def test_run_message_unwrapped(self, tmp_path):
        path = write(tmp_path, {"type": "run", "payload": request_dict([], None, request_id="wrapped")})
        data = load_request(path)
        assert data["requestId"] == "wrapped"
        assert data["options"] == {}

    def test_invalid_json(self, tmp_path):
        with pytest.raises(ConfigurationError, match="invalid JSON"):
            load_request(write(tmp_path, "{not json"))

    def test_non_object(self, tmp_path):
        with pytest.raises(ConfigurationError):
            load_request(write(tmp_path, [1, 2]))


class TestMain:
    def test_missing_file_exit_code(self, tmp_path, capsys):
        code = main([str(tmp_path / "absent.json")])
        assert code == 2
        line = json.loads(capsys.readouterr().out.strip())
        assert line["type"] == "error"
