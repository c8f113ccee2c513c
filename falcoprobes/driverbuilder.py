"""Building Falco eBPF probes inside a falco-driver-builder image."""

from __future__ import annotations

import os
import re

from falcoprobes.dockerapi import DockerAPIError
from falcoprobes.dockerclient import BuildOptions, ContainerExitError, DockerClient, RunOptions
from falcoprobes.kernel import KernelPackage, OperatingSystem
from falcoprobes.logsetup import get_logger

log = get_logger("driverbuilder")

# The repository the falco-driver-builder image is tagged under.
FALCO_DRIVER_BUILDER_REPOSITORY = "docker.io/thoughtmachine/falco-driver-builder"
# Where the falco-driver-builder image writes the probes it builds.
BUILT_FALCO_PROBES_DIR = "/root/.falco/"
# The Ubuntu release probes are compiled on.
UBUNTU_VERSION = "22.04"
# The directory built probes are collected in, one sub-directory per driver version.
DEFAULT_DIST_DIR = "dist"

_PROBE_PATH_RE = re.compile(re.escape(BUILT_FALCO_PROBES_DIR) + r".*falco_.*")
_DRIVER_VERSION_COMMAND = r'cat /usr/bin/falco-driver-loader | grep DRIVER_VERSION= | cut -f2 -d\"'


class ProbePathNotFoundError(LookupError):
    """Raised when the build output does not name a built probe."""

    def __init__(self) -> None:
        super().__init__("could not find built probe path in output")


def build_image(client: DockerClient, falco_version: str, dockerfile: str) -> str:
    """Build the falco-driver-builder image for ``falco_version`` and return its full name."""
    image = f"{FALCO_DRIVER_BUILDER_REPOSITORY}:{falco_version}"
    options = BuildOptions(
        dockerfile=dockerfile,
        build_args={"FALCO_VERSION": falco_version, "UBUNTU_VERSION": UBUNTU_VERSION},
        tags=[image],
    )
    try:
        client.build(options)
    except DockerAPIError as err:
        raise DockerAPIError(f"could not build {image}: {err}", status=err.status) from err
    return image


def get_probe_path_from_build_output(build_output: str) -> str:
    """Return the path of the built probe named in the builder's output."""
    match = _PROBE_PATH_RE.search(build_output)
    if match is None or not match.group(0):
        raise ProbePathNotFoundError()
    return match.group(0)


def extract_probe_from_volume(client: DockerClient, volume: str, built_probe_path: str) -> bytes:
    """Return the contents of the built probe at ``built_probe_path`` in ``volume``."""
    return client.get_file_from_volume(volume, BUILT_FALCO_PROBES_DIR, built_probe_path)


def get_driver_version(client: DockerClient, image: str) -> str:
    """Return the Falco driver version baked into a falco-driver-builder image."""
    output = client.run(
        RunOptions(
            image=image,
            entrypoint=["/bin/bash"],
            cmd=["-c", _DRIVER_VERSION_COMMAND],
        )
    )
    return output.strip()


def write_probe_to_file(
    driver_version: str,
    built_probe_path: str,
    probe: bytes,
    dist_dir: str = DEFAULT_DIST_DIR,
) -> str:
    """Write ``probe`` to ``<dist_dir>/<driver_version>/<probe file name>`` and return that path."""
    out_path = os.path.join(dist_dir, driver_version, os.path.basename(built_probe_path))
    os.makedirs(os.path.dirname(out_path), exist_ok=True)
    with open(out_path, "wb") as out:
        os.chmod(out_path, 0o644)
        out.write(probe)
        out.flush()
        os.fsync(out.fileno())
    return out_path


def build_ebpf_probe(
    client: DockerClient,
    falco_version: str,
    operating_system: OperatingSystem,
    kernel_package: KernelPackage,
    dockerfile: str,
) -> tuple[str, str]:
    """Build the eBPF probe for ``kernel_package``; return the driver version and probe path."""
    log.info("Building falco-driver-builder falco_version=%s", falco_version)
    builder_image = build_image(client, falco_version, dockerfile)
    driver_version = get_driver_version(client, builder_image)
    log.info(
        "Built falco-driver-builder falco_version=%s falco_driver_version=%s image=%s",
        falco_version,
        driver_version,
        builder_image,
    )

    log.info("Preparing /etc/os-release")
    etc_volume = client.create_volume()
    client.write_file_to_volume(etc_volume, "/etc/", "/etc/os-release", kernel_package.os_release)

    log.info(
        "Compiling Falco eBPF probe operating_system=%s kernel_package=%s kernel_release=%s "
        "kernel_version=%s kernel_machine=%s falco_driver_version=%s",
        kernel_package.operating_system,
        kernel_package.name,
        kernel_package.kernel_release,
        kernel_package.kernel_version,
        kernel_package.kernel_machine,
        driver_version,
    )
    built_probe_volume = client.create_volume()
    try:
        build_output = client.run(
            RunOptions(
                image=builder_image,
                volumes={
                    built_probe_volume: BUILT_FALCO_PROBES_DIR,
                    etc_volume: "/host/etc/",
                    kernel_package.kernel_configuration: "/host/lib/modules/",
                    kernel_package.kernel_sources: "/host/usr/src/",
                },
                env={
                    "UNAME_V": kernel_package.kernel_version,
                    "UNAME_R": kernel_package.kernel_release,
                    "UNAME_M": kernel_package.kernel_machine,
                },
            )
        )
    except ContainerExitError as err:
        log.error("could not build falco probe, build output:\n%s", err.output)
        raise

    try:
        built_probe_path = get_probe_path_from_build_output(build_output)
    except ProbePathNotFoundError:
        log.error("could not build falco probe, build output:\n%s", build_output)
        raise

    probe = extract_probe_from_volume(client, built_probe_volume, built_probe_path)
    out_path = write_probe_to_file(driver_version, built_probe_path, probe)
    log.info("successfully built probe path=%s", out_path)

    client.remove_volumes(etc_volume, built_probe_volume)
    return driver_version, out_path