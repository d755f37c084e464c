"""Tests for settings loading from YAML and environment."""

import json
from pathlib import Path

import pytest
import yaml
from pydantic import ValidationError

from event_relay.config.settings import Settings, deep_merge, load_all_configs

REPO_ROOT = Path(__file__).resolve().parents[1]


def _write_config(root: Path, config: dict[str, object]) -> None:
    config_dir = root / "config"
    config_dir.mkdir(exist_ok=True)
    (config_dir / "main.yaml").write_text(
        yaml.safe_dump(config, allow_unicode=True), encoding="utf-8"
    )


def _copy_schema(root: Path) -> None:
    schema_dir = root / "config" / "schemas"
    schema_dir.mkdir(parents=True, exist_ok=True)
    source = REPO_ROOT / "config" / "schemas" / "main.schema.json"
    (schema_dir / "main.schema.json").write_text(
        source.read_text(encoding="utf-8"), encoding="utf-8"
    )


@pytest.fixture(autouse=True)
def _isolated_cwd(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    for var in ("SESSION_DIR", "BAILEYS_AUTH_DIR", "TARGET_GROUP_NAME", "LLM_MODEL"):
        monkeypatch.delenv(var, raising=False)


def test_defaults_without_config() -> None:
    settings = Settings(openai_api_key="sk-test")

    assert settings.session_dir == ".baileys_auth"
    assert settings.bridge_url == "http://localhost:3001"
    assert settings.target_group_name == "אני"
    assert settings.group_cache_ttl_seconds == 1800
    assert settings.group_cache_max_persisted_age_seconds == 86400
    assert settings.group_cache_flush_interval_seconds == 300
    assert settings.group_cache_max_fetch_attempts == 3
    assert settings.group_cache_base_backoff_seconds == 2.0
    assert settings.photo_flood_window_seconds == 30
    assert settings.photo_flood_min_images == 3
    assert settings.photo_flood_no_caption_ratio == 0.7
    assert settings.dedup_retention_days == 30
    assert settings.llm_model == "gpt-4o"
    assert settings.tz_default == "Asia/Jerusalem"
    assert settings.metrics_enabled is False


def test_state_file_paths_live_in_session_dir(tmp_path: Path) -> None:
    settings = Settings(openai_api_key="sk-test", session_dir=str(tmp_path / "auth"))

    assert settings.group_cache_path == tmp_path / "auth" / "group_cache.json"
    assert settings.created_events_path == tmp_path / "auth" / "created_events.json"


def test_yaml_values_applied(tmp_path: Path) -> None:
    _write_config(
        tmp_path,
        {
            "whatsapp": {
                "target_group_name": "אירועים",
                "allowed_chat_names": ["הורים", "שכונה"],
            },
            "photo_flood": {"min_images": 5},
            "llm": {"model": "gpt-4o-mini", "focused_instructions": "רק אירועי ילדים"},
            "formatting": {"timezone": "Europe/London"},
        },
    )

    settings = Settings(openai_api_key="sk-test")

    assert settings.target_group_name == "אירועים"
    assert settings.allowed_chat_names == ["הורים", "שכונה"]
    assert settings.photo_flood_min_images == 5
    assert settings.llm_model == "gpt-4o-mini"
    assert settings.llm_focused_instructions == "רק אירועי ילדים"
    assert settings.tz_default == "Europe/London"


def test_env_overrides_yaml(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    _write_config(tmp_path, {"llm": {"model": "gpt-4o-mini"}})
    monkeypatch.setenv("LLM_MODEL", "gpt-4.1")
    monkeypatch.setenv("BAILEYS_AUTH_DIR", "/data/auth")

    settings = Settings(openai_api_key="sk-test")

    assert settings.llm_model == "gpt-4.1"
    assert settings.session_dir == "/data/auth"


def test_schema_violation_raises(tmp_path: Path) -> None:
    _copy_schema(tmp_path)
    _write_config(tmp_path, {"photo_flood": {"no_caption_ratio": 1.5}})

    with pytest.raises(ValueError, match="Config validation failed for main"):
        load_all_configs()


def test_repository_main_config_is_schema_valid(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.chdir(REPO_ROOT)

    config = load_all_configs()

    assert config["whatsapp"]["target_group_name"] == "אני"
    assert config["group_cache"]["ttl_seconds"] == 1800


def test_unknown_timezone_rejected() -> None:
    with pytest.raises(ValidationError):
        Settings(openai_api_key="sk-test", tz_default="Mars/Olympus")


def test_empty_api_key_rejected() -> None:
    with pytest.raises(ValidationError):
        Settings(openai_api_key="   ")


def test_allowed_chat_names_are_stripped() -> None:
    settings = Settings(openai_api_key="sk-test", allowed_chat_names=[" הורים ", ""])

    assert settings.allowed_chat_names == ["הורים"]


def test_deep_merge_nested() -> None:
    merged = deep_merge({"llm": {"model": "a", "temperature": 0.1}}, {"llm": {"model": "b"}})

    assert merged == {"llm": {"model": "b", "temperature": 0.1}}


def test_schema_file_is_valid_json() -> None:
    schema = json.loads(
        (REPO_ROOT / "config" / "schemas" / "main.schema.json").read_text(encoding="utf-8")
    )

    assert schema["type"] == "object"
