"""Reading Container-Optimized OS milestones and build IDs from its manifest repository."""

from __future__ import annotations

import json
import re
from abc import ABC, abstractmethod
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from typing import Any

import requests

# The lowest milestone still built; older milestones are skipped.
MILESTONE_MIN = 93

_MILESTONE_PREFIX = "origin/release-R"
_MILESTONE_RE = re.compile(re.escape(_MILESTONE_PREFIX) + r"\s*([+-]?[0-9]+)")
_BUILD_ID_RE = re.compile(r"\s*[+-]?[0-9]+\.\s*[+-]?[0-9]+\.\s*[+-]?[0-9]+")
_SHORTEN_PREFIXES = ("refs/heads/", "refs/tags/", "refs/remotes/")
_JSON_PREFIX = ")]}'"


@dataclass(frozen=True)
class Tag:
    """An annotated tag and the commit it points at."""

    name: str
    target: str


@dataclass(frozen=True)
class Reference:
    """A named reference and the commit it points at."""

    name: str
    hash: str

    @property
    def short_name(self) -> str:
        """The name without its ``refs/heads/``, ``refs/tags/`` or ``refs/remotes/`` prefix."""
        for prefix in _SHORTEN_PREFIXES:
            if self.name.startswith(prefix):
                return self.name[len(prefix):]
        return self.name


class ManifestRepository(ABC):
    """Read access to the tags, references and history of a git repository."""

    @abstractmethod
    def tag_objects(self) -> Iterable[Tag]:
        """Return the annotated tags of the repository."""

    @abstractmethod
    def references(self) -> Iterable[Reference]:
        """Return the references, with branches named as remote-tracking ``origin`` branches."""

    @abstractmethod
    def log(self, start: str) -> Iterable[str]:
        """Yield commit hashes reachable from ``start``, newest first, ``start`` included."""


class GitilesRepository(ManifestRepository):
    """A repository read through the JSON interface of a Gitiles server."""

    def __init__(self, url: str, session: Any = None, page_size: int = 1000, timeout: float = 30.0) -> None:
        self.url = url.rstrip("/")
        self._session = session
        self.page_size = page_size
        self.timeout = timeout
        self._refs: dict[str, dict[str, Any]] | None = None

    @property
    def session(self) -> Any:
        """The HTTP session used for requests."""
        if self._session is None:
            self._session = requests.Session()
        return self._session

    def _get_json(self, path: str, params: dict[str, str] | None = None) -> Any:
        response = self.session.get(
            f"{self.url}/{path}",
            params={"format": "JSON", **(params or {})},
            timeout=self.timeout,
        )
        response.raise_for_status()
        text = response.text
        if text.startswith(_JSON_PREFIX):
            text = text[len(_JSON_PREFIX):]
        return json.loads(text)

    def _all_refs(self) -> dict[str, dict[str, Any]]:
        if self._refs is None:
            self._refs = self._get_json("+refs")
        return self._refs

    def tag_objects(self) -> list[Tag]:
        return [
            Tag(name=name[len("refs/tags/"):], target=info["peeled"])
            for name, info in self._all_refs().items()
            if name.startswith("refs/tags/") and info.get("peeled")
        ]

    def references(self) -> list[Reference]:
        references = []
        for name, info in self._all_refs().items():
            value = info.get("value")
            if not value:
                continue
            if name.startswith("refs/heads/"):
                name = "refs/remotes/origin/" + name[len("refs/heads/"):]
            references.append(Reference(name=name, hash=value))
        return references

    def log(self, start: str) -> Iterator[str]:
        params = {"n": str(self.page_size)}
        while True:
            page = self._get_json(f"+log/{start}", params)
            for entry in page.get("log") or ():
                yield entry["commit"]
            next_commit = page.get("next")
            if not next_commit:
                return
            params = {"n": str(self.page_size), "s": next_commit}


def _milestones_to_refs(repository: ManifestRepository) -> dict[int, Reference]:
    milestones: dict[int, Reference] = {}
    for ref in repository.references():
        short_name = ref.short_name
        if not short_name.startswith(_MILESTONE_PREFIX):
            continue
        match = _MILESTONE_RE.match(short_name)
        if match is None:
            raise ValueError(f"could not read milestone from reference {short_name!r}")
        milestones[int(match.group(1))] = ref
    return milestones


def _hashes_to_build_id_tags(repository: ManifestRepository) -> dict[str, Tag]:
    return {tag.target: tag for tag in repository.tag_objects() if _BUILD_ID_RE.match(tag.name)}


def read_milestones_to_build_ids(repository: ManifestRepository, url: str) -> dict[int, list[str]]:
    """Map each active milestone to its build IDs, newest first."""
    try:
        milestones = _milestones_to_refs(repository)
    except (OSError, ValueError) as err:
        raise RuntimeError(f"could not list milestones for {url}: {err}") from err
    try:
        build_id_tags = _hashes_to_build_id_tags(repository)
    except (OSError, ValueError) as err:
        raise RuntimeError(f"could not list build ids for {url}: {err}") from err

    result: dict[int, list[str]] = {}
    for milestone, ref in milestones.items():
        if milestone < MILESTONE_MIN:
            continue
        try:
            result[milestone] = [
                build_id_tags[commit].name for commit in repository.log(ref.hash) if commit in build_id_tags
            ]
        except (OSError, ValueError) as err:
            raise RuntimeError(f"could not list milestones for {url}: {err}") from err
    return result