"""Tables of released probes kept in release notes."""

from __future__ import annotations

import re
from collections import Counter
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from functools import cmp_to_key
from typing import Protocol

from falcoprobes.releases import Release

_HEADER_CELL = " Kernel Package "
_AMZN2_MARKER = ".amzn2."
_FIELD_SEPARATORS = re.compile(r"[.-]")
_INTEGER = re.compile(r"[+-]?[0-9]+")
_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1

_RELEASE_NOTES_HEADER = """
# Probes
| Kernel Package | Probe |
|----------------|-------|
"""


@dataclass(frozen=True)
class ReleasedProbe:
    """A compiled probe released as an asset, with the kernel package it is for."""

    kernel_package: str = ""
    probe: str = ""

    def to_markdown_row(self) -> str:
        """Return this probe as a row of the release-notes table."""
        return f"|{self.kernel_package}|{self.probe}|"


def released_probe_from_markdown_row(row: str) -> ReleasedProbe:
    """Parse a table row; rows that are not probe rows give an empty ReleasedProbe."""
    if len(row) < 3 or not (row.startswith("|") and row.endswith("|")):
        return ReleasedProbe()
    cells = row[1:-1].split("|")
    if len(cells) != 2:
        return ReleasedProbe()
    kernel_package, probe = cells
    if set(kernel_package) <= {"-"} or kernel_package == _HEADER_CELL:
        return ReleasedProbe()
    return ReleasedProbe(kernel_package=kernel_package, probe=probe)


def kernel_package_from_probe_name(probe: str) -> str:
    """Return the Amazon Linux 2 kernel package a probe was built for, or ''."""
    if _AMZN2_MARKER not in probe:
        return ""
    parts = probe.split("_")
    kernel_package = parts[2] if len(parts) > 3 and parts[2] else ""
    index = kernel_package.find(_AMZN2_MARKER)
    if index < 0:
        raise ValueError(f"could not find kernel package in probe name {probe!r}")
    return kernel_package[: index + len(_AMZN2_MARKER) - 1]


def _fields(kernel_package: str) -> list[str]:
    return [part for part in _FIELD_SEPARATORS.split(kernel_package) if part]


def _as_int(text: str) -> int | None:
    if not _INTEGER.fullmatch(text):
        return None
    value = int(text)
    if not _INT64_MIN <= value <= _INT64_MAX:
        return None
    return value


def _less(a: str, b: str) -> bool:
    a_fields = _fields(a)
    b_fields = _fields(b)
    for index, a_field in enumerate(a_fields):
        if index >= len(b_fields):
            return False
        b_field = b_fields[index]
        if a_field == b_field:
            continue
        a_int, b_int = _as_int(a_field), _as_int(b_field)
        if a_int is None or b_int is None:
            return a_field < b_field
        return a_int < b_int
    return a < b


def compare_kernel_packages(a: str, b: str) -> int:
    """Order kernel packages by their dot/dash separated elements, numerically where possible."""
    if _less(a, b):
        return -1
    if _less(b, a):
        return 1
    return 0


def sort_released_probes(probes: Iterable[ReleasedProbe], reverse: bool = False) -> list[ReleasedProbe]:
    """Return probes sorted by kernel package; ``reverse`` puts the newest first."""
    key = cmp_to_key(compare_kernel_packages)
    return sorted(probes, key=lambda probe: key(probe.kernel_package), reverse=reverse)


def parse_probes_from_release_notes(release: Release) -> list[ReleasedProbe]:
    """Return the probes listed in the table of a release's notes."""
    parsed = (released_probe_from_markdown_row(line) for line in release.body.split("\n"))
    return [probe for probe in parsed if probe.kernel_package]


def list_kernel_packages_to_compile(
    probes: Iterable[ReleasedProbe],
    kernel_package_names: Iterable[str],
    num_releases: int,
) -> list[str]:
    """Return the kernel packages not yet released for all ``num_releases`` releases."""
    released = Counter(probe.kernel_package for probe in probes)
    return [name for name in kernel_package_names if num_releases - released[name] > 0]


def render_release_notes(probe_rows: Iterable[str]) -> str:
    """Return the release-notes body listing the given table rows."""
    return _RELEASE_NOTES_HEADER + "".join(f"{row}\n" for row in probe_rows)


class ReleaseEditor(Protocol):
    """Something that can replace the notes of an existing release."""

    def edit_release_notes_by_release_id(self, release_id: int, body: str) -> None:
        """Replace the body of the release with ``release_id``."""


def set_release_notes(releases: Sequence[Release], editor: ReleaseEditor) -> None:
    """Rewrite each release's notes as a table of its probes, newest kernel first."""
    for release in releases:
        probes = [
            ReleasedProbe(
                kernel_package=kernel_package_from_probe_name(asset.name),
                probe=asset.name,
            )
            if asset.name.endswith(".o")
            else ReleasedProbe()
            for asset in release.assets
        ]
        rows = [probe.to_markdown_row() for probe in sort_released_probes(probes, reverse=True)]
        editor.edit_release_notes_by_release_id(release.id, render_release_notes(rows))