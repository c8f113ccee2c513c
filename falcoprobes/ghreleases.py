"""Mirroring Falco probes as assets of GitHub releases."""

from __future__ import annotations

import os
import threading
from abc import ABC, abstractmethod

from falcoprobes.ghcache import CachingReleasesClient, GitHubAPIError, ReleaseNotFoundError
from falcoprobes.logsetup import get_logger
from falcoprobes.releases import Release, ReleaseAsset

log = get_logger("ghreleases")

# Release tags are cut to this length: names of 40 hex characters are rejected.
_TAG_LENGTH = 8


class Repository(ABC):
    """A place Falco probes are mirrored to, organised by driver version."""

    @abstractmethod
    def publish_probe(self, driver_version: str, probe_path: str) -> None:
        """Upload the probe at ``probe_path`` under ``driver_version``."""

    @abstractmethod
    def is_already_mirrored(self, driver_version: str, probe_name: str) -> bool:
        """Return whether ``probe_name`` is mirrored under ``driver_version``."""


class GHReleases(Repository):
    """Mirrors probes as assets of GitHub releases, one release per driver version."""

    def __init__(self, token: str = "", client: CachingReleasesClient | None = None) -> None:
        self.client = client if client is not None else CachingReleasesClient(token)
        self._ensure_lock = threading.Lock()

    def publish_probe(self, driver_version: str, probe_path: str) -> None:
        probe_file_name = os.path.basename(probe_path)
        release = self.ensure_release_for_driver_version(driver_version)
        try:
            asset = self.client.upload_release_asset(release.id, probe_file_name, probe_path)
        except (GitHubAPIError, ReleaseNotFoundError) as err:
            log.warning(
                "could not upload probe driver_version=%s probe_file_name=%s path=%s: %s",
                driver_version,
                probe_file_name,
                probe_path,
                err,
            )
            return
        log.info(
            "uploaded probe download_url=%s driver_version=%s probe_file_name=%s path=%s",
            asset.browser_download_url,
            driver_version,
            probe_file_name,
            probe_path,
        )

    def is_already_mirrored(self, driver_version: str, probe_name: str) -> bool:
        """Return True if the probe is mirrored; raise if the release or asset is missing."""
        try:
            release = self._release_by_name(driver_version)
        except GitHubAPIError as err:
            raise GitHubAPIError(f"could not get release: {err}", status=err.status) from err
        except LookupError as err:
            raise LookupError(f"could not get release: {err}") from err
        try:
            asset = self._asset_by_name(release, probe_name)
        except GitHubAPIError as err:
            raise GitHubAPIError(f"could not get asset: {err}", status=err.status) from err
        except LookupError as err:
            raise LookupError(f"could not get asset: {err}") from err
        log.info('Found probe, access with: curl -LO "%s"', asset.browser_download_url)
        return True

    def get_releases(self) -> list[Release]:
        """Return all releases."""
        try:
            return self.client.list_releases()
        except GitHubAPIError as err:
            raise GitHubAPIError(f"could not list releases: {err}", status=err.status) from err

    def edit_release_notes_by_release_id(self, release_id: int, body: str) -> None:
        """Replace the notes of the release with the given ID."""
        try:
            self.client.edit_release_notes(release_id, body)
        except GitHubAPIError as err:
            raise GitHubAPIError(f"could not edit release notes: {err}", status=err.status) from err

    def ensure_release_for_driver_version(self, driver_version: str) -> Release:
        """Return the release named ``driver_version``, creating it if it does not exist."""
        with self._ensure_lock:
            try:
                return self._release_by_name(driver_version)
            except (LookupError, GitHubAPIError):
                pass
            return self.client.create_release(driver_version, driver_version[:_TAG_LENGTH])

    def _asset_by_name(self, release: Release, probe_name: str) -> ReleaseAsset:
        try:
            assets = self.client.list_release_assets(release.id)
        except GitHubAPIError as err:
            raise GitHubAPIError(f"could not list release's assets: {err}", status=err.status) from err
        except LookupError as err:
            raise LookupError(f"could not list release's assets: {err}") from err
        for asset in assets:
            if asset.name == probe_name:
                return asset
        raise LookupError(f"could not find matching asset for: {probe_name}")

    def _release_by_name(self, driver_version: str) -> Release:
        try:
            releases = self.client.list_releases()
        except GitHubAPIError as err:
            raise GitHubAPIError(f"could not list releases: {err}", status=err.status) from err
        for release in releases:
            if release.name == driver_version:
                return release
        raise LookupError(f"could not find matching release for: {driver_version}")