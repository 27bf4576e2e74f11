from __future__ import annotations

from datetime import timedelta

import pytest
from nightly_builders import BASE_TIME, fake_sha, linear_history, make_record

from agent_nightlies.domain.errors import DivergentHistoryError, MissingShaReferenceError
from agent_nightlies.domain.models import CommitRef, CommitStat, DiffStat, NightlyRecord
from agent_nightlies.engine.diff import NightlyDiffEngine
from agent_nightlies.git.commit_graph import CommitGraph

pytestmark = pytest.mark.unit


def _nightly(index: int) -> NightlyRecord:
    return make_record(fake_sha(index)[:8], BASE_TIME + timedelta(hours=index + 1))


class _StubStats:
    def __init__(self) -> None:
        self.calls: list[tuple[str, str]] = []

    def diff_stat(self, older_sha: str, newer_sha: str) -> DiffStat:
        self.calls.append((older_sha, newer_sha))
        return DiffStat(lines=(" pkg/agent.go | 4 ++--",), binary_files=1)

    def commit_stat(self, sha: str) -> CommitStat:
        return CommitStat(insertions=int(sha[:8], 16), deletions=1)


@pytest.fixture
def graph() -> CommitGraph:
    return CommitGraph(linear_history(10))


def test_same_commit_produces_empty_report(graph: CommitGraph) -> None:
    report = NightlyDiffEngine(graph).diff(_nightly(3), _nightly(3))

    assert report.commit_count == 0
    assert report.commits == ()
    assert not report.truncated


def test_commits_are_listed_oldest_first(graph: CommitGraph) -> None:
    report = NightlyDiffEngine(graph).diff(_nightly(2), _nightly(5))

    assert report.commit_count == 3
    assert [commit.subject for commit in report.commits] == ["commit 3", "commit 4", "commit 5"]
    assert not report.reversed


def test_commit_list_is_capped(graph: CommitGraph) -> None:
    report = NightlyDiffEngine(graph, max_commits=2).diff(_nightly(2), _nightly(5))

    assert report.commit_count == 3
    assert len(report.commits) == 2
    assert report.truncated


def test_pair_is_swapped_when_history_disagrees(graph: CommitGraph) -> None:
    older, newer = _nightly(2), _nightly(5)

    report = NightlyDiffEngine(graph).diff(newer, older)

    assert report.reversed
    assert report.older == older
    assert report.newer == newer
    assert report.commit_count == 3


def test_floating_tag_cannot_be_diffed(graph: CommitGraph) -> None:
    floating = make_record(None, BASE_TIME)

    with pytest.raises(MissingShaReferenceError) as excinfo:
        NightlyDiffEngine(graph).diff(_nightly(2), floating)

    assert excinfo.value.tag_name == "nightly-main-py3"


def test_unrelated_commits_are_refused() -> None:
    root = CommitRef(sha=fake_sha(1), date=BASE_TIME, subject="root")
    left = CommitRef(
        sha=fake_sha(2), date=BASE_TIME + timedelta(hours=1), parents=(root.sha,), subject="left"
    )
    right = CommitRef(
        sha=fake_sha(3), date=BASE_TIME + timedelta(hours=2), parents=(root.sha,), subject="right"
    )
    graph = CommitGraph([right, left, root])

    with pytest.raises(DivergentHistoryError):
        NightlyDiffEngine(graph).diff(_nightly(2), _nightly(3))


def test_file_summary_comes_from_stat_provider(graph: CommitGraph) -> None:
    stats = _StubStats()

    report = NightlyDiffEngine(graph, stat_provider=stats).diff(_nightly(4), _nightly(6))

    assert stats.calls == [(fake_sha(4), fake_sha(6))]
    assert report.file_summary is not None
    assert report.file_summary.binary_files == 1
    assert report.to_dict()["file_summary"] == {
        "lines": [" pkg/agent.go | 4 ++--"],
        "binary_files": 1,
    }
    assert report.commit_stats == {
        fake_sha(5): CommitStat(insertions=5, deletions=1),
        fake_sha(6): CommitStat(insertions=6, deletions=1),
    }
    assert report.to_dict()["commits"][0]["insertions"] == 5


def test_merge_commits_are_not_listed() -> None:
    root = CommitRef(sha=fake_sha(1), date=BASE_TIME, subject="root")
    side = CommitRef(
        sha=fake_sha(2), date=BASE_TIME + timedelta(hours=1), parents=(root.sha,), subject="side"
    )
    mainline = CommitRef(
        sha=fake_sha(3),
        date=BASE_TIME + timedelta(hours=2),
        parents=(root.sha,),
        subject="mainline",
    )
    merge = CommitRef(
        sha=fake_sha(4),
        date=BASE_TIME + timedelta(hours=3),
        parents=(mainline.sha, side.sha),
        subject="Merge side",
    )
    tip = CommitRef(
        sha=fake_sha(5), date=BASE_TIME + timedelta(hours=4), parents=(merge.sha,), subject="tip"
    )
    graph = CommitGraph([tip, merge, mainline, side, root])

    report = NightlyDiffEngine(graph).diff(_nightly(1), _nightly(5))

    assert report.commit_count == 3
    assert [commit.subject for commit in report.commits] == ["side", "mainline", "tip"]
    assert report.commit_stats == {}


def test_max_commits_must_be_positive(graph: CommitGraph) -> None:
    with pytest.raises(ValueError):
        NightlyDiffEngine(graph, max_commits=0)
