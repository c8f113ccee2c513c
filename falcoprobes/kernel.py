"""Kernel packages and the operating systems that provide them."""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass

_DRIVER_NAME = "falco"
# The leading build number of `uname -v`, e.g. "#151-Ubuntu SMP ..." -> "151".
_KERNEL_VERSION_RE = re.compile(r"^#([0-9]+)")


class KernelPackageValidationError(ValueError):
    """Raised when a kernel package cannot yield a usable probe name."""


@dataclass
class KernelPackage:
    """The inputs needed to build a Falco driver for one kernel package.

    ``kernel_release``, ``kernel_version`` and ``kernel_machine`` stand in for
    ``uname -r``, ``uname -v`` and ``uname -m``; ``os_release`` is the contents
    of ``/etc/os-release``; ``kernel_configuration`` and ``kernel_sources`` are
    the names of volumes mounted as ``/host/lib/modules/`` and ``/usr/src/``.
    """

    operating_system: str = ""
    name: str = ""
    kernel_release: str = ""
    kernel_version: str = ""
    kernel_machine: str = ""
    os_release: str = ""
    kernel_configuration: str = ""
    kernel_sources: str = ""

    def probe_name(self) -> str:
        """Return the probe name Falco's driver loader expects, without extension."""
        match = _KERNEL_VERSION_RE.match(self.kernel_version)
        kernel_version = match.group(1) if match else ""
        return f"{_DRIVER_NAME}_{self.operating_system}_{self.kernel_release}_{kernel_version}"

    def validate(self) -> None:
        """Check that the probe name includes the operating system."""
        probe_name = self.probe_name()
        if self.operating_system not in probe_name:
            raise KernelPackageValidationError(
                f"kernel probe name '{probe_name}' does not include "
                f"operating system '{self.operating_system}'"
            )


class OperatingSystem(ABC):
    """Lists and fetches the kernel packages available for an operating system."""

    @abstractmethod
    def get_name(self) -> str:
        """Return the unique name of this operating system."""

    @abstractmethod
    def get_kernel_package_names(self) -> list[str]:
        """Return the names of all available kernel packages."""

    @abstractmethod
    def get_kernel_package_by_name(self, name: str) -> KernelPackage:
        """Fetch sources, configuration and metadata for the named kernel package."""