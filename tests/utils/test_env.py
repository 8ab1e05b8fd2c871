import importlib
import os
from pathlib import Path
from unittest.mock import patch

import pytest

import utils
from config.config import PricingCoreConfig
from utils.env import find_project_root, load_project_dotenv


@pytest.fixture(autouse=True)
def _no_env_file_override(monkeypatch):
    monkeypatch.delenv("PRICING_ENV_FILE", raising=False)


@pytest.mark.parametrize("depth", [0, 1, 3])
def test_find_project_root_walks_up_to_pyproject(tmp_path: Path, depth):
    """pyproject.toml is found from the start directory or any level below it."""
    project_root = tmp_path / "proj"
    project_root.mkdir()
    (project_root / "pyproject.toml").touch()
    start_dir = project_root.joinpath(*[f"sub{i}" for i in range(depth)])
    start_dir.mkdir(parents=True, exist_ok=True)

    assert find_project_root(start=start_dir) == project_root


@patch("utils.env.load_dotenv")
@patch("utils.env.find_project_root")
def test_load_dotenv_reads_project_env_file(mock_find_root, mock_load_dotenv, tmp_path: Path):
    """Test the project .env file is loaded."""
    (tmp_path / "pyproject.toml").touch()
    env_file = tmp_path / ".env"
    env_file.touch()
    mock_find_root.return_value = tmp_path
    mock_load_dotenv.return_value = True

    assert load_project_dotenv() is True
    mock_load_dotenv.assert_called_once_with(dotenv_path=env_file, override=False)


@patch("utils.env.load_dotenv")
@patch("utils.env.find_project_root")
def test_load_dotenv_skips_missing_file(mock_find_root, mock_load_dotenv, tmp_path: Path):
    """Test a missing .env file is skipped."""
    mock_find_root.return_value = tmp_path

    assert load_project_dotenv() is False
    mock_load_dotenv.assert_not_called()


@patch("utils.env.find_project_root")
def test_process_environment_wins_over_env_file(mock_find_root, tmp_path: Path, monkeypatch):
    """Test process variables take precedence over the .env file."""
    (tmp_path / ".env").write_text("PRICING_LOG_LEVEL=DEBUG\nPRICING_FORECAST_TIMEOUT_SECONDS=2.5\n")
    mock_find_root.return_value = tmp_path
    monkeypatch.setenv("PRICING_LOG_LEVEL", "WARNING")
    monkeypatch.delenv("PRICING_FORECAST_TIMEOUT_SECONDS", raising=False)

    load_project_dotenv()

    assert os.environ.get("PRICING_LOG_LEVEL") == "WARNING"
    assert os.environ.get("PRICING_FORECAST_TIMEOUT_SECONDS") == "2.5"
    monkeypatch.delenv("PRICING_FORECAST_TIMEOUT_SECONDS")


@patch("utils.env.load_dotenv")
def test_load_dotenv_honours_env_file_override(mock_load_dotenv, tmp_path: Path, monkeypatch):
    """PRICING_ENV_FILE points load_project_dotenv at another file."""
    env_file = tmp_path / "pricing.env"
    env_file.write_text("PRICING_STOCKOUT_ALERT_THRESHOLD_HOURS=36\n")
    monkeypatch.setenv("PRICING_ENV_FILE", str(env_file))
    mock_load_dotenv.return_value = True

    assert load_project_dotenv() is True
    mock_load_dotenv.assert_called_once_with(dotenv_path=env_file, override=False)


def test_load_dotenv_returns_false_for_missing_override(tmp_path: Path, monkeypatch):
    """Test an explicit path that does not exist."""
    monkeypatch.setenv("PRICING_ENV_FILE", str(tmp_path / "missing.env"))
    assert load_project_dotenv() is False


def test_importing_utils_does_not_load_env_file(tmp_path: Path, monkeypatch):
    """Only PricingCoreConfig.from_env reads the .env file."""
    env_file = tmp_path / "pricing.env"
    env_file.write_text("PRICING_INGESTION_WORKERS=9\n")
    monkeypatch.setenv("PRICING_ENV_FILE", str(env_file))
    monkeypatch.delenv("PRICING_INGESTION_WORKERS", raising=False)

    importlib.reload(utils)
    assert "PRICING_INGESTION_WORKERS" not in os.environ

    assert PricingCoreConfig.from_env().ingestion.workers == 9
    monkeypatch.delenv("PRICING_INGESTION_WORKERS")
