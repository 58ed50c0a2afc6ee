"""The tray seeding script: API location from config, existing trays tolerated."""
# pylint: disable=redefined-outer-name
import importlib.util
import sys
from pathlib import Path
from unittest.mock import Mock, patch

import pytest

SCRIPT = Path(__file__).parents[2] / "scripts" / "seed_trays.py"


@pytest.fixture
def seed_trays():
    spec = importlib.util.spec_from_file_location("seed_trays", SCRIPT)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def response(status_code):
    return Mock(status_code=status_code, text="")


def test_api_url_comes_from_environment(monkeypatch, seed_trays):
    monkeypatch.setenv("API_HOST", "mortuary-api")
    monkeypatch.setenv("API_PORT", "9000")
    monkeypatch.setattr(sys, "argv", ["seed_trays.py", "--count", "2"])

    with patch.object(seed_trays.requests, "get", return_value=response(200)) as get, \
            patch.object(seed_trays.requests, "post", side_effect=[response(201), response(409)]) as post:
        with pytest.raises(SystemExit) as exit_info:
            seed_trays.main()

    assert exit_info.value.code == 0
    get.assert_called_once_with("http://mortuary-api:9000/health", timeout=5)
    assert [c.kwargs["json"]["code"] for c in post.call_args_list] == ["B-01", "B-02"]
    assert post.call_args.args[0] == "http://mortuary-api:9000/api/v1/trays"


def test_failed_tray_exits_non_zero(monkeypatch, seed_trays):
    monkeypatch.setattr(sys, "argv", ["seed_trays.py", "--count", "1", "--api-url", "http://api"])

    with patch.object(seed_trays.requests, "get", return_value=response(200)), \
            patch.object(seed_trays.requests, "post", return_value=response(500)):
        with pytest.raises(SystemExit) as exit_info:
            seed_trays.main()

    assert exit_info.value.code == 1
