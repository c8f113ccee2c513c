"""Release and release-asset records as returned by the GitHub API."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any


@dataclass
class ReleaseAsset:
    """A file attached to a release."""

    id: int = 0
    name: str = ""
    browser_download_url: str = ""


@dataclass
class Release:
    """A release with its notes and attached assets."""

    id: int = 0
    name: str = ""
    tag_name: str = ""
    body: str = ""
    draft: bool = False
    assets: list[ReleaseAsset] = field(default_factory=list)


def asset_from_api(data: Mapping[str, Any]) -> ReleaseAsset:
    """Build a ReleaseAsset from a GitHub API asset object."""
    return ReleaseAsset(
        id=data.get("id") or 0,
        name=data.get("name") or "",
        browser_download_url=data.get("browser_download_url") or "",
    )


def release_from_api(data: Mapping[str, Any]) -> Release:
    """Build a Release from a GitHub API release object."""
    return Release(
        id=data.get("id") or 0,
        name=data.get("name") or "",
        tag_name=data.get("tag_name") or "",
        body=data.get("body") or "",
        draft=bool(data.get("draft")),
        assets=[asset_from_api(asset) for asset in data.get("assets") or ()],
    )