"""Checking which Container-Optimized OS build IDs are published releases."""

from __future__ import annotations

from collections.abc import Iterable
from concurrent.futures import ThreadPoolExecutor
from typing import Any

import requests

MAX_CONCURRENT = 100
TIMEOUT = 5.0
URL_TEMPLATE = "https://storage.googleapis.com/cos-tools/{}/kernel_commit"


class BuildIDValidationError(RuntimeError):
    """Raised when a build ID's release could not be checked."""

    def __init__(self, build_id: str, cause: BaseException) -> None:
        super().__init__(f"could not validate build id {build_id}: {cause}")
        self.build_id = build_id


class BuildIDValidator:
    """Filters build IDs down to those with published release artifacts."""

    def __init__(self, session: Any = None, max_concurrent: int = MAX_CONCURRENT, timeout: float = TIMEOUT) -> None:
        self._session = session
        self.max_concurrent = max_concurrent
        self.timeout = timeout

    @property
    def session(self) -> Any:
        """The HTTP session used for requests."""
        if self._session is None:
            self._session = requests.Session()
        return self._session

    def filter_invalid(self, build_ids: Iterable[str]) -> list[str]:
        """Return the build IDs that are valid releases, in their given order."""
        build_ids = list(build_ids)
        if not build_ids:
            return []
        workers = max(1, min(self.max_concurrent, len(build_ids)))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            verdicts = list(pool.map(self._is_valid, build_ids))
        return [build_id for build_id, valid in zip(build_ids, verdicts) if valid]

    def _is_valid(self, build_id: str) -> bool:
        # No milestone has ever released a build ending in .0.0; these are
        # pre-releases which the driver loader cannot handle either.
        if build_id.endswith(".0.0"):
            return False
        try:
            response = self.session.head(URL_TEMPLATE.format(build_id), timeout=self.timeout)
        except requests.RequestException as err:
            raise BuildIDValidationError(build_id, err) from err
        return response.status_code <= 299