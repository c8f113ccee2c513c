"""Looking up operating systems by name."""

from __future__ import annotations

from collections.abc import Callable

from falcoprobes import amazonlinux2, cos
from falcoprobes.amazonlinux2 import AmazonLinux2
from falcoprobes.cos import Cos
from falcoprobes.dockerclient import DockerClient
from falcoprobes.kernel import OperatingSystem

# The supported operating systems and their constructors.
OPERATING_SYSTEMS: dict[str, Callable[[DockerClient], OperatingSystem]] = {
    amazonlinux2.NAME: AmazonLinux2,
    cos.NAME: Cos,
}


class UnsupportedOperatingSystemError(ValueError):
    """Raised for an operating system name that has no implementation."""

    def __init__(self, name: str) -> None:
        super().__init__(f"unsupported operating system: {name}")
        self.name = name


def resolve_operating_system(client: DockerClient, name: str) -> OperatingSystem:
    """Return the operating system implementation registered under ``name``."""
    try:
        constructor = OPERATING_SYSTEMS[name]
    except KeyError:
        raise UnsupportedOperatingSystemError(name) from None
    return constructor(client)