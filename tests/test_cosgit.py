import json
import re
from types import SimpleNamespace

import pytest

from falcoprobes.cosgit import (
    MILESTONE_MIN,
    GitilesRepository,
    ManifestRepository,
    Reference,
    Tag,
    read_milestones_to_build_ids,
)

URL = "https://cos.example.com/cos/manifest-snapshots"


class FakeRepository(ManifestRepository):
    def __init__(self, references, tags, history):
        self._references = references
        self._tags = tags
        self._history = history

    def tag_objects(self):
        return list(self._tags)

    def references(self):
        return list(self._references)

    def log(self, start):
        return iter(self._history[start])


def _fake_repository():
    return FakeRepository(
        references=[
            Reference("refs/remotes/origin/release-R101", "c3"),
            Reference("refs/remotes/origin/release-R92", "b2"),
            Reference("refs/heads/master", "m1"),
        ],
        tags=[
            Tag("17162.40.35", "c3"),
            Tag("17162.40.34", "c2"),
            Tag("not-a-build", "c1"),
            Tag("16000.1.1", "b2"),
        ],
        history={"c3": ["c3", "c2", "c1"], "b2": ["b2", "b1"], "m1": ["m1"]},
    )


def test_read_milestones_to_build_ids():
    result = read_milestones_to_build_ids(_fake_repository(), URL)
    assert 101 in result
    assert MILESTONE_MIN - 1 not in result
    assert re.fullmatch(r"\d+\.\d+\.\d+", result[101][0])
    assert result == {101: ["17162.40.35", "17162.40.34"]}


def test_milestone_without_number_is_an_error():
    repository = FakeRepository(
        references=[Reference("refs/remotes/origin/release-Rabc", "c1")],
        tags=[],
        history={},
    )
    with pytest.raises(RuntimeError, match="could not list milestones"):
        read_milestones_to_build_ids(repository, URL)


def test_milestone_without_tags_is_empty():
    repository = FakeRepository(
        references=[Reference("refs/remotes/origin/release-R105", "d1")],
        tags=[],
        history={"d1": ["d1"]},
    )
    assert read_milestones_to_build_ids(repository, URL) == {105: []}


@pytest.mark.parametrize(
    "name, short",
    [
        ("refs/remotes/origin/release-R101", "origin/release-R101"),
        ("refs/heads/master", "master"),
        ("refs/tags/17162.40.35", "17162.40.35"),
        ("HEAD", "HEAD"),
    ],
)
def test_reference_short_name(name, short):
    assert Reference(name, "abc").short_name == short


class FakeGitilesSession:
    def __init__(self, pages):
        self.pages = pages
        self.calls = []

    def get(self, url, params, timeout):
        self.calls.append((url, dict(params)))
        key = (url[len(URL) + 1:], params.get("s"))
        body = ")]}'\n" + json.dumps(self.pages[key])
        return SimpleNamespace(text=body, raise_for_status=lambda: None)


def _gitiles_pages():
    return {
        ("+refs", None): {
            "HEAD": {"value": "m1", "target": "refs/heads/master"},
            "refs/heads/master": {"value": "m1"},
            "refs/heads/release-R101": {"value": "c3"},
            "refs/tags/17162.40.35": {"value": "t3", "peeled": "c3"},
            "refs/tags/17162.40.34": {"value": "t2", "peeled": "c2"},
            "refs/tags/lightweight": {"value": "c1"},
        },
        ("+log/c3", None): {"log": [{"commit": "c3"}, {"commit": "c2"}], "next": "c1"},
        ("+log/c3", "c1"): {"log": [{"commit": "c1"}]},
    }


def test_gitiles_tags_are_only_annotated():
    repository = GitilesRepository(URL, session=FakeGitilesSession(_gitiles_pages()))
    assert sorted(repository.tag_objects(), key=lambda tag: tag.name) == [
        Tag("17162.40.34", "c2"),
        Tag("17162.40.35", "c3"),
    ]


def test_gitiles_branches_are_remote_tracking():
    repository = GitilesRepository(URL, session=FakeGitilesSession(_gitiles_pages()))
    names = {ref.short_name: ref.hash for ref in repository.references()}
    assert names["origin/release-R101"] == "c3"
    assert names["origin/master"] == "m1"


def test_gitiles_log_follows_pages():
    session = FakeGitilesSession(_gitiles_pages())
    repository = GitilesRepository(URL, session=session, page_size=2)
    assert list(repository.log("c3")) == ["c3", "c2", "c1"]
    assert session.calls[-1][1] == {"format": "JSON", "n": "2", "s": "c1"}


def test_gitiles_end_to_end():
    session = FakeGitilesSession(_gitiles_pages())
    repository = GitilesRepository(URL, session=session)
    assert read_milestones_to_build_ids(repository, URL) == {101: ["17162.40.35", "17162.40.34"]}
    assert sum(1 for url, _ in session.calls if url.endswith("+refs")) == 1