from packages.xai_lib.config.paths import PathsConfig
from packages.xai_lib.config.system import SystemConfig
from packages.xai_lib.helpers.structs import flatten_dict
from packages.xai_lib.logging import LogManager


def test_flatten_nested_context():
    context = {"venue": "home", "weather": {"conditions": "rain", "wind": {"speed": 22}}, "tags": [1, 2]}
    assert flatten_dict(context) == {
        "venue": "home",
        "weather.conditions": "rain",
        "weather.wind.speed": 22,
        "tags": [1, 2],
    }


def test_flatten_empty():
    assert flatten_dict({}) == {}


def test_log_manager_writes_json_file(tmp_path):
    logger = LogManager("unit", debug=True, log_dir=tmp_path).get_logger("helpers")
    logger.info("hello")
    logger.complete()

    assert (tmp_path / "unit.json.log").exists()


def test_settings_read_environment(monkeypatch, tmp_path):
    monkeypatch.setenv("XAI_ENV", "staging")
    monkeypatch.setenv("DEBUG", "true")
    monkeypatch.setenv("XAI_KNOWLEDGE_PATH", str(tmp_path / "pack.yml"))

    system = SystemConfig()
    assert system.environment == "staging"
    assert system.debug is True
    assert PathsConfig().knowledge_path == tmp_path / "pack.yml"
