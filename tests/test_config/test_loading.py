from pathlib import Path

import pytest

import helmsman.config as config_module
from helmsman.config import Config, get_config, set_config


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path: Path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(config_module, "DEFAULT_CONFIG_PATH", tmp_path / "missing" / "config.yaml")
    for name in ("HELMSMAN_AGENT__MAX_ITERATIONS", "HELMSMAN_MODEL__PROVIDER", "HELMSMAN_MODEL__MODEL"):
        monkeypatch.delenv(name, raising=False)


def test_defaults_without_config_file():
    cfg = Config.load()

    assert cfg.model.provider == "ollama"
    assert cfg.agent.max_iterations == 1000
    assert cfg.agent.max_tool_calls == 1000
    assert cfg.agent.memory_size == 100
    assert cfg.agent.enable_channel_markup_parser is False
    assert cfg.tools.shell.yolo is False
    assert "ls" in cfg.tools.shell.allowed_commands
    assert cfg.session.auto_save is True


def test_load_prefers_local_config_yaml(monkeypatch, tmp_path: Path):
    home_cfg = tmp_path / "home_config.yaml"
    home_cfg.write_text("model:\n  provider: groq\n", encoding="utf-8")
    monkeypatch.setattr(config_module, "DEFAULT_CONFIG_PATH", home_cfg)
    assert Config.load().model.provider == "groq"

    (tmp_path / "helmsman.yaml").write_text(
        "model:\n  provider: openai\n  model: gpt-4o-mini\nagent:\n  max_iterations: 7\n  tools: [calculate]\n",
        encoding="utf-8",
    )

    cfg = Config.load()

    assert cfg.model.provider == "openai"
    assert cfg.model.model == "gpt-4o-mini"
    assert cfg.agent.max_iterations == 7
    assert cfg.agent.tools == ["calculate"]


def test_environment_overrides_yaml(monkeypatch, tmp_path: Path):
    path = tmp_path / "custom.yaml"
    path.write_text("agent:\n  max_iterations: 7\n  temperature: 0.2\n", encoding="utf-8")
    monkeypatch.setenv("HELMSMAN_AGENT__MAX_ITERATIONS", "3")

    cfg = Config.from_yaml(path)

    assert cfg.agent.max_iterations == 3
    assert cfg.agent.temperature == 0.2


def test_save_round_trips_through_yaml(tmp_path: Path):
    cfg = Config()
    cfg.model.provider = "deepseek"
    cfg.tools.shell.allowed_commands = ["ls"]
    path = tmp_path / "out" / "config.yaml"

    cfg.save(path)
    loaded = Config.from_yaml(path)

    assert loaded.model.provider == "deepseek"
    assert loaded.tools.shell.allowed_commands == ["ls"]


def test_invalid_values_are_rejected(tmp_path: Path):
    path = tmp_path / "bad.yaml"
    path.write_text("agent:\n  max_iterations: 0\n", encoding="utf-8")

    with pytest.raises(ValueError):
        Config.from_yaml(path)


def test_global_config_can_be_replaced():
    original = get_config()
    replacement = Config()
    replacement.model.model = "other"
    set_config(replacement)
    try:
        assert get_config().model.model == "other"
    finally:
        set_config(original)
