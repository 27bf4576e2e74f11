from __future__ import annotations

import json
from pathlib import Path

import pytest

from agent_nightlies.config.loader import ConfigLoadError, dump_effective_config, load_config
from agent_nightlies.config.schema import ConfigValidationError

pytestmark = pytest.mark.unit


def _write(path: Path, text: str) -> Path:
    path.write_text(text, encoding="utf-8")
    return path


def test_defaults_apply_without_a_config_file(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.chdir(tmp_path)

    config = load_config(environ={})

    assert config["registry"]["repository"] == "datadog/agent-dev"
    assert config["tags"]["suffix"] == "-py3"
    assert config["cache"]["staleness_minutes"] == 60


def test_precedence_cli_over_env_over_file(tmp_path: Path) -> None:
    config_file = _write(
        tmp_path / "nightlies.toml",
        '[registry]\nnum_pages = 2\npage_size = 50\n\n[query]\ninclude_weekends = false\n',
    )

    config = load_config(
        config_file,
        environ={"NIGHTLIES_REGISTRY_NUM_PAGES": "4", "NIGHTLIES_QUERY_INCLUDE_WEEKENDS": "yes"},
        cli_overrides={"registry.num_pages": 7, "query.include_weekends": None},
    )

    assert config["registry"]["num_pages"] == 7
    assert config["registry"]["page_size"] == 50
    assert config["query"]["include_weekends"] is True


def test_relative_paths_resolve_against_config_directory(tmp_path: Path) -> None:
    config_dir = tmp_path.resolve() / "conf"
    config_dir.mkdir()
    config_file = _write(
        config_dir / "nightlies.toml",
        '[cache]\npath = "state/tags.sqlite3"\n\n[git]\nrepo_path = "../checkout"\n',
    )

    config = load_config(config_file, environ={})

    assert config["cache"]["path"] == (config_dir / "state" / "tags.sqlite3").as_posix()
    assert config["git"]["repo_path"] == (config_dir.parent / "checkout").as_posix()


def test_explicit_missing_file_is_an_error(tmp_path: Path) -> None:
    with pytest.raises(ConfigLoadError, match="not found"):
        load_config(tmp_path / "missing.toml", environ={})


def test_invalid_toml_is_an_error(tmp_path: Path) -> None:
    config_file = _write(tmp_path / "nightlies.toml", "[registry\nnum_pages = ")

    with pytest.raises(ConfigLoadError, match="invalid TOML"):
        load_config(config_file, environ={})


@pytest.mark.parametrize(
    ("env", "match"),
    [
        ({"NIGHTLIES_REGISTRY_NUM_PAGES": "three"}, "must be an integer"),
        ({"NIGHTLIES_REGISTRY_TIMEOUT_SECONDS": "soon"}, "must be a number"),
        ({"NIGHTLIES_QUERY_INCLUDE_WEEKENDS": "maybe"}, "must be a boolean"),
    ],
)
def test_bad_env_values_are_rejected(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, env: dict[str, str], match: str
) -> None:
    monkeypatch.chdir(tmp_path)

    with pytest.raises(ConfigLoadError, match=match):
        load_config(environ=env)


def test_env_values_are_validated_after_coercion(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.chdir(tmp_path)

    with pytest.raises(ConfigValidationError, match="registry.num_pages"):
        load_config(environ={"NIGHTLIES_REGISTRY_NUM_PAGES": "0"})


def test_bad_cli_override_key(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)

    with pytest.raises(ConfigLoadError, match="invalid CLI override key"):
        load_config(environ={}, cli_overrides={"num_pages": 3})


def test_dump_is_deterministic_json(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    config = load_config(environ={"NIGHTLIES_REGISTRY_TOKEN_ENV": "HUB_TOKEN"})

    dumped = dump_effective_config(config)

    assert dumped == dump_effective_config(dict(reversed(list(config.items()))))
    assert json.loads(dumped)["registry"]["token_env"] == "HUB_TOKEN"
    assert ", " not in dumped
