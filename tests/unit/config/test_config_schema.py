from __future__ import annotations

from typing import Any

import pytest

from agent_nightlies.config.schema import (
    ConfigSchemaVersion,
    ConfigValidationError,
    assert_valid_config,
    default_config,
    merge_config,
    migration_guidance,
    redact_config,
    validate_config,
)

pytestmark = pytest.mark.unit


def _with(section: str, **values: Any) -> dict[str, Any]:
    return merge_config(default_config(), {section: values})


def _issue_paths(config: object) -> set[str]:
    return {issue.path for issue in validate_config(config).issues}


def test_defaults_are_valid_and_copied() -> None:
    first = default_config()
    first["registry"]["num_pages"] = 99

    assert default_config()["registry"]["num_pages"] != 99
    assert validate_config(default_config()).is_valid


def test_merge_is_deep_and_does_not_mutate_inputs() -> None:
    base = default_config()
    merged = merge_config(base, {"cache": {"staleness_minutes": 5}})

    assert merged["cache"]["staleness_minutes"] == 5
    assert merged["cache"]["path"] == base["cache"]["path"]
    assert base["cache"]["staleness_minutes"] != 5


@pytest.mark.parametrize(
    ("section", "values", "path"),
    [
        ("registry", {"base_url": "ftp://hub"}, "registry.base_url"),
        ("registry", {"repository": "NoSlash"}, "registry.repository"),
        ("registry", {"page_size": 101}, "registry.page_size"),
        ("registry", {"num_pages": 0}, "registry.num_pages"),
        ("registry", {"timeout_seconds": float("nan")}, "registry.timeout_seconds"),
        ("registry", {"token_env": "lower-case"}, "registry.token_env"),
        ("tags", {"branch": "main branch"}, "tags.branch"),
        ("tags", {"suffix": "py3"}, "tags.suffix"),
        ("tags", {"source_url_template": "https://github.com/x"}, "tags.source_url_template"),
        ("cache", {"staleness_minutes": -1}, "cache.staleness_minutes"),
        ("git", {"branch_ref": "--all"}, "git.branch_ref"),
        ("git", {"max_commits": True}, "git.max_commits"),
        ("query", {"include_weekends": "yes"}, "query.include_weekends"),
        ("query", {"default_window_days": 0}, "query.default_window_days"),
        ("observability", {"log_level": "TRACE"}, "observability.log_level"),
    ],
)
def test_invalid_fields_report_their_path(section: str, values: dict[str, Any], path: str) -> None:
    assert path in _issue_paths(_with(section, **values))


def test_unknown_and_secret_fields_are_rejected() -> None:
    payload = merge_config(default_config(), {"registry": {"api_token": "abc", "colour": "red"}})

    result = validate_config(payload)

    messages = {issue.path: issue.message for issue in result.issues}
    assert "token_env" in messages["registry.api_token"]
    assert messages["registry.colour"] == "unknown field"


def test_missing_section_and_non_object_root() -> None:
    payload = default_config()
    del payload["git"]  # type: ignore[misc]

    assert "git" in _issue_paths(payload)
    assert _issue_paths(["not", "a", "mapping"]) == {"<root>"}


def test_schema_version_mismatch_gives_guidance() -> None:
    with pytest.raises(ConfigValidationError) as excinfo:
        assert_valid_config(_with("meta", schema_version=ConfigSchemaVersion + 1))

    assert "upgrade agent-nightlies" in str(excinfo.value)
    assert "older than supported" in migration_guidance(0)
    assert migration_guidance(ConfigSchemaVersion) == "schema version is current"


def test_log_level_is_case_insensitive() -> None:
    config = assert_valid_config(_with("observability", log_level="debug"))

    assert config["observability"]["log_level"] == "DEBUG"


def test_redaction_masks_sensitive_keys_only() -> None:
    redacted = redact_config({"registry": {"token_env": "HUB_TOKEN", "password": "hunter2"}})

    assert redacted == {"registry": {"password": "<redacted>", "token_env": "HUB_TOKEN"}}
    assert redact_config("nope") == {}
