"""The Container-Optimized OS operating system."""

from __future__ import annotations

from typing import Any

from falcoprobes.buildid import BuildIDValidator
from falcoprobes.coskernel import new_kernel_package
from falcoprobes.cosgit import GitilesRepository, ManifestRepository, read_milestones_to_build_ids
from falcoprobes.dockerclient import DockerClient
from falcoprobes.kernel import KernelPackage, OperatingSystem

NAME = "cos"
# The repository holding every COS milestone and build ID.
URL_VERSIONS = "https://cos.googlesource.com/cos/manifest-snapshots"


def image_name(milestone: int, build_id: str) -> str:
    """Return the image name for a milestone and build ID, e.g. cos-101-17162-40-34."""
    return f"cos-{milestone}-{build_id.replace('.', '-')}"


class Cos(OperatingSystem):
    """Container-Optimized OS; its kernel package names are image names."""

    def __init__(
        self,
        client: DockerClient,
        repository: ManifestRepository | None = None,
        validator: Any = None,
        session: Any = None,
    ) -> None:
        self.client = client
        self._repository = repository
        self._validator = validator
        self._session = session

    def get_name(self) -> str:
        return NAME

    def get_kernel_package_names(self) -> list[str]:
        repository = self._repository or GitilesRepository(URL_VERSIONS, session=self._session)
        try:
            milestones = read_milestones_to_build_ids(repository, URL_VERSIONS)
        except RuntimeError as err:
            raise RuntimeError(f"could not retrieve milestones and build ids: {err}") from err
        validator = self._validator or BuildIDValidator(session=self._session)
        names = []
        for milestone, candidates in milestones.items():
            for build_id in validator.filter_invalid(candidates):
                names.append(image_name(milestone, build_id))
        return names

    def get_kernel_package_by_name(self, name: str) -> KernelPackage:
        return new_kernel_package(self.client, name, self._session)