"""A GitHub Releases client that caches releases and assets to save API requests."""

from __future__ import annotations

import mimetypes
import threading
from collections.abc import Iterator
from typing import Any

import requests

from falcoprobes.releases import Release, ReleaseAsset, asset_from_api, release_from_api

# The organization and repository releases are published under.
GITHUB_ORGANIZATION = "thought-machine"
GITHUB_REPOSITORY = "falco-probes"

API_URL = "https://api.github.com"
UPLOADS_URL = "https://uploads.github.com"
PER_PAGE = 100
HTTP_TIMEOUT = 60.0


class ReleaseNotFoundError(LookupError):
    """Raised when a requested release is not in the cache."""

    def __init__(self, release_id: int) -> None:
        super().__init__("release not found")
        self.release_id = release_id


class GitHubAPIError(RuntimeError):
    """Raised when the GitHub API cannot be reached or answers with an error."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


def _error_message(response: Any) -> str:
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict) and payload.get("message"):
        return str(payload["message"])
    text = (getattr(response, "text", "") or "").strip()
    return text or f"HTTP {response.status_code}"


def _next_link(response: Any) -> str | None:
    links = getattr(response, "links", None) or {}
    return (links.get("next") or {}).get("url")


class CachingReleasesClient:
    """Talks to the GitHub Releases API, answering repeated reads from a cache."""

    def __init__(
        self,
        token: str,
        owner: str = GITHUB_ORGANIZATION,
        repo: str = GITHUB_REPOSITORY,
        session: Any = None,
        api_url: str = API_URL,
        uploads_url: str = UPLOADS_URL,
        timeout: float = HTTP_TIMEOUT,
    ) -> None:
        self.owner = owner
        self.repo = repo
        self.api_url = api_url.rstrip("/")
        self.uploads_url = uploads_url.rstrip("/")
        self.timeout = timeout
        self._session = session
        self._headers = {
            "Authorization": f"Bearer {token}",
            "Accept": "application/vnd.github.v3+json",
        }
        self._releases: dict[int, Release] = {}
        self._assets: dict[int, ReleaseAsset] = {}
        self._asset_releases: dict[int, int] = {}
        self._lock = threading.RLock()
        self._count_lock = threading.Lock()
        self._api_requests = 0

    @property
    def session(self) -> Any:
        """The HTTP session used for requests."""
        if self._session is None:
            self._session = requests.Session()
        return self._session

    @property
    def api_requests_count(self) -> int:
        """The number of API requests made by this client."""
        with self._count_lock:
            return self._api_requests

    def _releases_url(self, base: str | None = None) -> str:
        return f"{base or self.api_url}/repos/{self.owner}/{self.repo}/releases"

    def _call(self, method: str, url: str, **kwargs: Any) -> Any:
        with self._count_lock:
            self._api_requests += 1
        headers = {**self._headers, **(kwargs.pop("headers", None) or {})}
        try:
            response = self.session.request(method, url, headers=headers, timeout=self.timeout, **kwargs)
        except requests.RequestException as err:
            raise GitHubAPIError(str(err)) from err
        if response.status_code >= 400:
            raise GitHubAPIError(_error_message(response), status=response.status_code)
        return response

    def _paginate(self, url: str) -> Iterator[dict[str, Any]]:
        params: dict[str, Any] | None = {"per_page": PER_PAGE}
        next_url: str | None = url
        while next_url:
            response = self._call("GET", next_url, params=params)
            yield from response.json() or ()
            next_url = _next_link(response)
            params = None

    def _cache_asset(self, asset: ReleaseAsset, release_id: int) -> None:
        self._assets[asset.id] = asset
        self._asset_releases[asset.id] = release_id

    def _cached_assets(self, release_id: int) -> list[ReleaseAsset]:
        return [
            self._assets[asset_id]
            for asset_id, owner in self._asset_releases.items()
            if owner == release_id
        ]

    def _populate_releases(self) -> None:
        with self._lock:
            self._releases = {}
            try:
                for item in self._paginate(self._releases_url()):
                    release = release_from_api(item)
                    self._releases[release.id] = release
            except GitHubAPIError as err:
                raise GitHubAPIError(f"could not list releases: {err}", status=err.status) from err

    def _populate_release_assets(self, release_id: int) -> None:
        with self._lock:
            url = f"{self._releases_url()}/{release_id}/assets"
            try:
                for item in self._paginate(url):
                    self._cache_asset(asset_from_api(item), release_id)
            except GitHubAPIError as err:
                raise GitHubAPIError(f"could not list release's assets: {err}", status=err.status) from err

    def upload_release_asset(self, release_id: int, name: str, path: str) -> ReleaseAsset:
        """Upload the file at ``path`` as asset ``name`` of a cached release."""
        release = self.get_release_by_id(release_id)
        with open(path, "rb") as probe_file:
            data = probe_file.read()
        content_type = mimetypes.guess_type(name)[0] or "application/octet-stream"
        with self._lock:
            response = self._call(
                "POST",
                f"{self._releases_url(self.uploads_url)}/{release.id}/assets",
                params={"name": name},
                data=data,
                headers={"Content-Type": content_type},
            )
            asset = asset_from_api(response.json())
            self._cache_asset(asset, release.id)
        return asset

    def create_release(self, name: str, tag_name: str, draft: bool = False) -> Release:
        """Create a release and add it to the cache."""
        with self._lock:
            response = self._call(
                "POST",
                self._releases_url(),
                json={"name": name, "tag_name": tag_name, "draft": draft},
            )
            release = release_from_api(response.json())
            self._releases[release.id] = release
        return release

    def list_release_assets(self, release_id: int) -> list[ReleaseAsset]:
        """Return the assets of a cached release, fetching them if none are cached."""
        release = self.get_release_by_id(release_id)
        with self._lock:
            assets = self._cached_assets(release.id)
            if not assets:
                self._populate_release_assets(release.id)
                assets = self._cached_assets(release.id)
            return assets

    def list_releases(self) -> list[Release]:
        """Return all releases, fetching them if none are cached."""
        with self._lock:
            if not self._releases:
                self._populate_releases()
            return list(self._releases.values())

    def get_release_by_id(self, release_id: int) -> Release:
        """Return a cached release, raising ReleaseNotFoundError if it is not cached."""
        with self._lock:
            try:
                return self._releases[release_id]
            except KeyError:
                raise ReleaseNotFoundError(release_id) from None

    def edit_release_notes(self, release_id: int, body: str) -> None:
        """Replace the notes of a release, updating the cached copy too."""
        self._call("PATCH", f"{self._releases_url()}/{release_id}", json={"body": body})
        with self._lock:
            cached = self._releases.get(release_id)
            if cached is not None:
                cached.body = body