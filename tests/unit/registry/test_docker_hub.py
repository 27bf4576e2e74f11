from __future__ import annotations

from typing import Any

import pytest
import requests
from nightly_builders import BASE_TIME

from agent_nightlies.registry.base import RegistryTransportError
from agent_nightlies.registry.docker_hub import DockerHubRegistry, parse_tag_entry

pytestmark = pytest.mark.unit


class _FakeResponse:
    def __init__(self, status_code: int, payload: Any) -> None:
        self.status_code = status_code
        self._payload = payload

    def json(self) -> Any:
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload


class _FakeSession:
    def __init__(self, responses: dict[str, Any]) -> None:
        self._responses = responses
        self.requests: list[dict[str, Any]] = []
        self.closed = False

    def get(
        self,
        url: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> _FakeResponse:
        self.requests.append({"url": url, "params": params, "headers": headers, "timeout": timeout})
        response = self._responses[url]
        if isinstance(response, Exception):
            raise response
        return response

    def close(self) -> None:
        self.closed = True


_TAGS_URL = "https://hub.docker.com/v2/repositories/datadog/agent-dev/tags"
_NEXT_URL = f"{_TAGS_URL}?page=2&page_size=2&name=nightly-main-"


def _registry(session: _FakeSession, **kwargs: Any) -> DockerHubRegistry:
    kwargs.setdefault("environ", {})
    return DockerHubRegistry(
        base_url="https://hub.docker.com/v2/repositories",
        repository="datadog/agent-dev",
        page_size=2,
        session=session,  # type: ignore[arg-type]
        **kwargs,
    )


def _entry(name: str, **extra: Any) -> dict[str, Any]:
    return {"name": name, "tag_last_pushed": "2023-12-27T04:16:00.000000Z", **extra}


def test_first_page_uses_prefix_filter_and_returns_next_cursor() -> None:
    session = _FakeSession(
        {
            _TAGS_URL: _FakeResponse(
                200,
                {
                    "results": [_entry("nightly-main-c9456471-py3"), _entry("nightly-main-py3")],
                    "next": _NEXT_URL,
                },
            )
        }
    )

    page = _registry(session).fetch_tag_page(None)

    assert [tag.name for tag in page.tags] == ["nightly-main-c9456471-py3", "nightly-main-py3"]
    assert page.tags[0].last_pushed == BASE_TIME
    assert page.next_cursor == _NEXT_URL
    assert session.requests[0]["params"] == {"page_size": 2, "name": "nightly-main-"}
    assert "Authorization" not in session.requests[0]["headers"]


def test_next_cursor_is_followed_verbatim() -> None:
    session = _FakeSession({_NEXT_URL: _FakeResponse(200, {"results": [], "next": None})})

    page = _registry(session).fetch_tag_page(_NEXT_URL)

    assert page.tags == ()
    assert page.next_cursor is None
    assert session.requests[0]["params"] is None


def test_malformed_entries_are_skipped() -> None:
    session = _FakeSession(
        {
            _TAGS_URL: _FakeResponse(
                200,
                {
                    "results": [
                        "not-an-object",
                        {"name": "nightly-main-c9456471-py3"},
                        {
                            "name": "nightly-main-e4acb3f1-py3",
                            "last_updated": "2023-12-26T04:15:00Z",
                        },
                    ]
                },
            )
        }
    )

    page = _registry(session).fetch_tag_page(None)

    assert [tag.name for tag in page.tags] == ["nightly-main-e4acb3f1-py3"]


def test_digests_come_from_listing_or_detail_call() -> None:
    session = _FakeSession(
        {
            _TAGS_URL: _FakeResponse(
                200,
                {
                    "results": [
                        _entry("nightly-main-c9456471-py3", images=[{"digest": "sha256:aa"}]),
                        _entry("nightly-main-e4acb3f1-py3"),
                    ]
                },
            ),
            f"{_TAGS_URL}/nightly-main-e4acb3f1-py3": _FakeResponse(200, {"digest": "sha256:bb"}),
        }
    )
    registry = _registry(session)

    plain = registry.fetch_tag_page(None)
    with_digests = registry.fetch_tag_page(None, include_digests=True)

    assert all(tag.digest is None for tag in plain.tags)
    assert [tag.digest for tag in with_digests.tags] == ["sha256:aa", "sha256:bb"]


def test_failed_digest_lookup_keeps_the_page() -> None:
    session = _FakeSession(
        {
            _TAGS_URL: _FakeResponse(
                200,
                {
                    "results": [
                        _entry("nightly-main-c9456471-py3"),
                        _entry("nightly-main-e4acb3f1-py3"),
                        _entry("nightly-main-0b1d2c3e-py3"),
                    ],
                    "next": _NEXT_URL,
                },
            ),
            f"{_TAGS_URL}/nightly-main-c9456471-py3": _FakeResponse(503, {}),
            f"{_TAGS_URL}/nightly-main-e4acb3f1-py3": requests.ConnectionError("reset"),
            f"{_TAGS_URL}/nightly-main-0b1d2c3e-py3": _FakeResponse(200, {"digest": "sha256:cc"}),
        }
    )

    page = _registry(session).fetch_tag_page(None, include_digests=True)

    assert [(tag.name, tag.digest) for tag in page.tags] == [
        ("nightly-main-c9456471-py3", None),
        ("nightly-main-e4acb3f1-py3", None),
        ("nightly-main-0b1d2c3e-py3", "sha256:cc"),
    ]
    assert page.next_cursor == _NEXT_URL


@pytest.mark.parametrize(
    ("response", "match"),
    [
        (_FakeResponse(503, {}), "HTTP 503"),
        (_FakeResponse(200, ValueError("bad json")), "invalid JSON"),
        (_FakeResponse(200, ["not", "an", "object"]), "non-object"),
        (_FakeResponse(200, {"next": None}), "'results'"),
        (requests.ConnectionError("connection refused"), "request failed"),
    ],
)
def test_transport_failures_raise_typed_error(response: Any, match: str) -> None:
    registry = _registry(_FakeSession({_TAGS_URL: response}))

    with pytest.raises(RegistryTransportError, match=match):
        registry.fetch_tag_page(None)


def test_token_is_read_from_configured_environment_variable() -> None:
    session = _FakeSession({_TAGS_URL: _FakeResponse(200, {"results": []})})
    registry = _registry(session, token_env="HUB_TOKEN", environ={"HUB_TOKEN": " dckr_pat_x "})

    registry.fetch_tag_page(None)
    registry.close()

    assert session.requests[0]["headers"]["Authorization"] == "Bearer dckr_pat_x"
    assert session.closed


def test_invalid_construction_is_rejected() -> None:
    with pytest.raises(ValueError):
        DockerHubRegistry(page_size=0, session=_FakeSession({}))  # type: ignore[arg-type]
    with pytest.raises(ValueError):
        DockerHubRegistry(timeout_seconds=0, session=_FakeSession({}))  # type: ignore[arg-type]


def test_parse_tag_entry_prefers_tag_last_pushed() -> None:
    tag = parse_tag_entry(
        _entry("nightly-main-py3", last_updated="2020-01-01T00:00:00Z", digest="sha256:cc"),
        include_digest=False,
    )

    assert tag is not None
    assert tag.last_pushed == BASE_TIME
    assert tag.digest is None
