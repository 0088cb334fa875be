from pathlib import Path

import memory_assistant.config as config_module
from memory_assistant.config import Config


def test_load_prefers_local_config_yaml(monkeypatch, tmp_path: Path):
    monkeypatch.chdir(tmp_path)

    home_cfg = tmp_path / "home_config.yaml"
    home_cfg.write_text("model:\n  model: llama3.2\n", encoding="utf-8")
    monkeypatch.setattr(config_module, "DEFAULT_CONFIG_PATH", home_cfg)

    local_cfg = tmp_path / "config.yaml"
    local_cfg.write_text(
        (
            "model:\n"
            "  provider: ollama\n"
            "  model: qwen3:32b\n"
            "tools:\n"
            "  require_confirmation:\n"
            "    - getLocalTime\n"
        ),
        encoding="utf-8",
    )

    cfg = Config.load()

    assert cfg.model.model == "qwen3:32b"
    assert cfg.tools.require_confirmation == ["getLocalTime"]


def test_load_falls_back_to_default_path_when_no_local(monkeypatch, tmp_path: Path):
    monkeypatch.chdir(tmp_path)

    home_cfg = tmp_path / "home_config.yaml"
    home_cfg.write_text("agent:\n  max_steps: 3\nweb:\n  port: 9100\n", encoding="utf-8")
    monkeypatch.setattr(config_module, "DEFAULT_CONFIG_PATH", home_cfg)

    cfg = Config.load()

    assert cfg.agent.max_steps == 3
    assert cfg.web.port == 9100


def test_load_returns_defaults_when_no_file(monkeypatch, tmp_path: Path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(config_module, "DEFAULT_CONFIG_PATH", tmp_path / "missing.yaml")

    cfg = Config.load()

    assert cfg.model.provider == "ollama"
    assert cfg.tools.timeout_seconds == 30.0
    assert cfg.tools.factory == ""
    assert cfg.agent.max_steps == 8
    assert cfg.web.host == "127.0.0.1"


def test_env_fills_sections_the_yaml_leaves_unset(monkeypatch, tmp_path: Path):
    monkeypatch.chdir(tmp_path)
    local_cfg = tmp_path / "config.yaml"
    local_cfg.write_text("model:\n  model: llama3.2\n", encoding="utf-8")
    monkeypatch.setenv("MEMORY_ASSISTANT_WEB__PORT", "9200")

    cfg = Config.load()

    assert cfg.model.model == "llama3.2"
    assert cfg.web.port == 9200


def test_yaml_value_wins_over_env_for_same_field(monkeypatch, tmp_path: Path):
    monkeypatch.chdir(tmp_path)
    local_cfg = tmp_path / "config.yaml"
    local_cfg.write_text("web:\n  port: 9300\n", encoding="utf-8")
    monkeypatch.setenv("MEMORY_ASSISTANT_WEB__PORT", "9400")
    monkeypatch.setenv("MEMORY_ASSISTANT_AGENT__MAX_STEPS", "2")

    cfg = Config.load(local_cfg)

    assert cfg.web.port == 9300
    assert cfg.agent.max_steps == 2


def test_save_round_trips_through_yaml(tmp_path: Path):
    cfg = Config()
    cfg.tools.factory = "my_tools:build"
    cfg.agent.max_steps = 5
    target = tmp_path / "nested" / "config.yaml"

    cfg.save(target)
    loaded = Config.load(target)

    assert loaded.tools.factory == "my_tools:build"
    assert loaded.agent.max_steps == 5
