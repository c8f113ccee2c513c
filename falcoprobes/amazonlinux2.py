"""The Amazon Linux 2 operating system and its kernel packages."""

from __future__ import annotations

import re
from collections.abc import Iterable

from falcoprobes.dockerapi import DockerAPIError
from falcoprobes.dockerclient import BuildOptions, DockerClient, RunOptions
from falcoprobes.kernel import KernelPackage, OperatingSystem

NAME = "amazonlinux2"

AMAZON_LINUX2_IMAGE = "docker.io/library/amazonlinux:2"
FALCO_DRIVER_LOADER_IMAGE = "docker.io/falcosecurity/falco-driver-loader:0.33.0"

# Builds an image that downloads RPMs from the Amazon Linux 2 repositories, with the
# extra kernels from amazon-linux-extras that are known to compile enabled.
YUM_DOWNLOADER_DOCKERFILE = r"""FROM amazonlinux:2
RUN yum install -y yum-utils 
RUN export REPOS="kernel-5.4" \
	&& for r in $REPOS; do \
		amazon-linux-extras enable $r && \
		# disable to allow us to obtain repositories which overlap.
		amazon-linux-extras disable $r; \
	done \
	# enable all repositories.
	&& sed -i 's/enabled = 0/enabled = 1/g' /etc/yum.repos.d/amzn2-extras.repo
"""
YUM_DOWNLOADER_REPOSITORY = "docker.io/thoughtmachine/falco-yumdownloader"

_LIST_PACKAGES_COMMAND = (
    "yum --showduplicates list kernel-devel | tail -n+3 | awk '{ print $2 }' | sort -uV"
)
_DOWNLOAD_SCRIPT = """
set -euo pipefail
yumdownloader kernel-{name} kernel-devel-{name}
rpm2cpio kernel-{name}.$(uname -m).rpm | cpio --extract --make-directories
rpm2cpio kernel-devel-{name}.$(uname -m).rpm | cpio --extract --make-directories
"""
_MAJOR_MINOR_RE = re.compile(r"^[0-9]+\.[0-9]+")


def _uts_command(field: str) -> str:
    return (
        "find /usr/src -name compile.h | grep 'generated/compile.h' | xargs grep -ho "
        + field
        + r'.* | cut -f2 -d\"'
    )


def build_yum_downloader(client: DockerClient) -> str:
    """Build the yumdownloader image and return its full name."""
    image = f"{YUM_DOWNLOADER_REPOSITORY}:latest"
    try:
        client.build(BuildOptions(dockerfile=YUM_DOWNLOADER_DOCKERFILE, tags=[image]))
    except DockerAPIError as err:
        raise DockerAPIError(f"could not build {image}: {err}", status=err.status) from err
    return image


def _yum_downloader(client: DockerClient) -> str:
    try:
        return build_yum_downloader(client)
    except DockerAPIError as err:
        raise DockerAPIError(f"could not build falco-driver-loader: {err}", status=err.status) from err


def only_ebpf_compatible_package_names(package_names: Iterable[str]) -> list[str]:
    """Drop the packages whose kernel predates eBPF support (major <= 4 and minor < 14)."""
    compatible = []
    for name in package_names:
        match = _MAJOR_MINOR_RE.match(name)
        if match is None:
            raise ValueError(f"could not read kernel major.minor from package name {name!r}")
        major, minor = (int(part) for part in match.group(0).split("."))
        if not (major <= 4 and minor < 14):
            compatible.append(name)
    return compatible


def _add_sources_and_configuration(client: DockerClient, kp: KernelPackage) -> None:
    kp.kernel_configuration = client.create_volume()
    kp.kernel_sources = client.create_volume()
    image = _yum_downloader(client)
    client.run(
        RunOptions(
            image=image,
            entrypoint=["/bin/bash"],
            cmd=["-c", _DOWNLOAD_SCRIPT.format(name=kp.name)],
            volumes={kp.kernel_sources: "/usr/src/", kp.kernel_configuration: "/lib/modules/"},
        )
    )


def _add_os_release(client: DockerClient, kp: KernelPackage) -> None:
    volume = client.create_volume()
    client.run(
        RunOptions(
            image=AMAZON_LINUX2_IMAGE,
            entrypoint=["cp"],
            cmd=["/etc/os-release", "/host/etc/os-release"],
            volumes={volume: "/host/etc/"},
        )
    )
    contents = client.get_file_from_volume(volume, "/host/etc/", "/host/etc/os-release")
    kp.os_release = contents.decode("utf-8", errors="replace") if isinstance(contents, bytes) else contents


def _find_kernel_src_path(client: DockerClient, sources_volume: str, name: str) -> str:
    output = client.run(
        RunOptions(
            image=AMAZON_LINUX2_IMAGE,
            entrypoint=["find"],
            cmd=["/usr/src/", "-name", f"*{name}*", "-type", "d"],
            volumes={sources_volume: "/usr/src/"},
        )
    )
    return output.strip()


def _run_in_sources(client: DockerClient, sources_volume: str, src_path: str, command: str) -> str:
    output = client.run(
        RunOptions(
            image=FALCO_DRIVER_LOADER_IMAGE,
            entrypoint=["/bin/bash"],
            cmd=["-c", command],
            volumes={sources_volume: "/usr/src/"},
            working_dir=src_path,
        )
    )
    return output.strip()


def _add_kernel_release_version_and_machine(client: DockerClient, kp: KernelPackage) -> None:
    src_path = _find_kernel_src_path(client, kp.kernel_sources, kp.name)
    kp.kernel_release = _run_in_sources(client, kp.kernel_sources, src_path, "make kernelrelease | tail -n1")
    kp.kernel_version = _run_in_sources(client, kp.kernel_sources, src_path, _uts_command("UTS_VERSION"))
    kp.kernel_machine = _run_in_sources(client, kp.kernel_sources, src_path, _uts_command("UTS_MACHINE"))


def new_kernel_package(client: DockerClient, name: str) -> KernelPackage:
    """Download and inspect the named kernel package, returning it fully populated."""
    kp = KernelPackage(operating_system=NAME, name=name)
    _add_sources_and_configuration(client, kp)
    _add_os_release(client, kp)
    _add_kernel_release_version_and_machine(client, kp)
    return kp


class AmazonLinux2(OperatingSystem):
    """Amazon Linux 2, whose kernel packages come from its yum repositories."""

    def __init__(self, client: DockerClient) -> None:
        self.client = client

    def get_name(self) -> str:
        return NAME

    def get_kernel_package_names(self) -> list[str]:
        image = _yum_downloader(self.client)
        output = self.client.run(
            RunOptions(image=image, entrypoint=["bash"], cmd=["-c", _LIST_PACKAGES_COMMAND])
        )
        return only_ebpf_compatible_package_names(output.strip().split("\n"))

    def get_kernel_package_by_name(self, name: str) -> KernelPackage:
        return new_kernel_package(self.client, name)