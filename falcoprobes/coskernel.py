"""Kernel packages for Container-Optimized OS images."""

from __future__ import annotations

import base64
import binascii
import io
import re
import tarfile
import time
import zlib
from dataclasses import dataclass
from typing import Any

import requests

from falcoprobes.dockerclient import DockerClient, RunOptions
from falcoprobes.kernel import KernelPackage
from falcoprobes.logsetup import get_logger

log = get_logger("cos")

# The smallest image a container can be created from without building one.
BUSYBOX_IMAGE = "docker.io/library/busybox:1.33.1"
OPERATING_SYSTEM = "cos"

# A kernel release such as "5.15.73+".
KERNEL_RELEASE_PATTERN = r"^([0-9]+\.){2}[0-9]+\+$"
# Tries, including the first, when the COS servers answer 429.
RATE_LIMIT_TRIES = 3
# Seconds multiplied by the try number to wait after a 429.
RATE_LIMIT_SECONDS_BASE = 5
HTTP_TIMEOUT = 60.0

URL_COS_KERNEL_CONFIG_TEMPLATE = (
    "https://cos.googlesource.com/third_party/kernel/+/{}/arch/x86/configs/{}_defconfig?format=TEXT"
)
URL_COS_TOOLS_TEMPLATE = "https://storage.googleapis.com/cos-tools/{}/{}"
ARCHES = ("lakitu", "x86_64")

_KERNEL_RELEASE_RE = re.compile(KERNEL_RELEASE_PATTERN)
_VERSION_RE = re.compile(r"cos-\s*([+-]?[0-9]+)-\s*(\S+)")

_OS_RELEASE_TEMPLATE = """
ID=cos
NAME="Container-Optimized OS"
PRETTY_NAME="Container-Optimized OS from Google"
VERSION={milestone}
VERSION_ID={milestone}
BUILD_ID={build_id}
"""
_MAKE_DIRS_TEMPLATE = "mkdir -p /usr/src/kernels && mkdir -p '/lib/modules/{}'"


@dataclass(frozen=True)
class Version:
    """The milestone and build ID of an image, e.g. cos-101-17162-40-34 -> 101, 17162.40.34."""

    milestone: int
    build_id: str


def parse_version(name: str) -> Version:
    """Return the milestone and build ID encoded in an image name."""
    match = _VERSION_RE.match(name)
    if match is None:
        raise ValueError(f"could not parse version from image name {name}: input does not match cos-<milestone>-<build>")
    return Version(milestone=int(match.group(1)), build_id=match.group(2).replace("-", "."))


def _session(session: Any) -> Any:
    return session if session is not None else requests.Session()


def _status(response: Any) -> str:
    reason = getattr(response, "reason", "") or ""
    return f"{response.status_code} {reason}".strip()


def _fetch(session: Any, url: str, what: str) -> Any:
    try:
        return session.get(url, timeout=HTTP_TIMEOUT)
    except requests.RequestException as err:
        raise RuntimeError(f"could not get {what}: {err}") from err


def _get_with_retries(session: Any, url: str, what: str) -> Any:
    for attempt in range(1, RATE_LIMIT_TRIES + 1):
        response = _fetch(session, url, what)
        if response.status_code == 429:
            if attempt == RATE_LIMIT_TRIES:
                raise RuntimeError(
                    f"rate limited {RATE_LIMIT_TRIES} times with 429 for {what}: {_status(response)}"
                )
            time.sleep(RATE_LIMIT_SECONDS_BASE * attempt)
            continue
        if response.status_code > 299:
            raise RuntimeError(f"could not get 2XX response for {what}: {_status(response)}")
        return response
    raise RuntimeError(f"could not get {what}")


def read_kernel_headers(build_id: str, session: Any = None) -> bytes:
    """Download the gzipped kernel headers archive for a build ID."""
    url = URL_COS_TOOLS_TEMPLATE.format(build_id, "kernel-headers.tgz")
    response = _get_with_retries(_session(session), url, f"kernel headers for build id {build_id}")
    return response.content


def _quoted_value(line: str, build_id: str) -> str:
    parts = line.split('"', 2)
    if len(parts) < 2:
        raise ValueError(f"could not read quoted value from {line!r} in kernel headers for build id {build_id}")
    return parts[1]


def _release_from_dir_name(name: str, build_id: str) -> str | None:
    parts = name.split("linux-headers-", 1)
    if len(parts) < 2:
        return None
    plus = parts[1].find("+")
    if plus < 0:
        return None
    # Falco expects the '+' in the probe's file name, so it is kept.
    release = parts[1][: plus + 1]
    if not _KERNEL_RELEASE_RE.search(release):
        raise ValueError(
            f"could not validate kernel release '{release}' against pattern '{KERNEL_RELEASE_PATTERN}' "
            f"in kernel headers archive for build id {build_id}"
        )
    return release


def extract_kernel_details(build_id: str, kernel_headers: bytes, kernel_package: KernelPackage) -> KernelPackage:
    """Fill in the release, version and machine of ``kernel_package`` from a headers archive."""
    try:
        tar = tarfile.open(fileobj=io.BytesIO(kernel_headers), mode="r:gz")
    except (tarfile.TarError, OSError, EOFError, zlib.error) as err:
        raise RuntimeError(f"could not decompress kernel headers for build id {build_id}: {err}") from err

    kp = kernel_package
    with tar:
        try:
            for member in tar:
                if member.isdir():
                    if kp.kernel_release:
                        continue
                    release = _release_from_dir_name(member.name, build_id)
                    if release is None:
                        continue
                    kp.kernel_release = release
                elif member.isreg():
                    if kp.kernel_version and kp.kernel_machine:
                        continue
                    if "generated/compile.h" not in member.name:
                        continue
                    extracted = tar.extractfile(member)
                    text = extracted.read().decode("utf-8", errors="replace") if extracted else ""
                    for line in text.split("\n"):
                        line = line.rstrip("\r")
                        if "UTS_MACHINE" in line:
                            kp.kernel_machine = _quoted_value(line, build_id)
                        elif "UTS_VERSION" in line:
                            kp.kernel_version = _quoted_value(line, build_id)
                if kp.kernel_release and kp.kernel_version and kp.kernel_machine:
                    break
        except (tarfile.TarError, OSError, EOFError, zlib.error) as err:
            raise RuntimeError(
                f"could not get next file header in kernel headers archive for build id {build_id}: {err}"
            ) from err
    return kp


def read_kernel_commit(build_id: str, session: Any = None) -> str:
    """Return the kernel commit a build ID was built from."""
    url = URL_COS_TOOLS_TEMPLATE.format(build_id, "kernel_commit")
    response = _get_with_retries(_session(session), url, f"kernel commit for build id {build_id}")
    body = response.text
    return body[:-1] if body.endswith("\n") else body


def read_kernel_config(build_id: str, kernel_commit: str, session: Any = None) -> str:
    """Return the base64-encoded kernel config for a commit, trying each architecture in turn."""
    session = _session(session)
    what = f"kernel config for build id {build_id} (kernel commit {kernel_commit})"
    last_arch = len(ARCHES) - 1
    for index, arch in enumerate(ARCHES):
        url = URL_COS_KERNEL_CONFIG_TEMPLATE.format(kernel_commit, arch)
        for attempt in range(1, RATE_LIMIT_TRIES + 1):
            response = _fetch(session, url, what)
            if response.status_code == 429:
                if attempt == RATE_LIMIT_TRIES:
                    raise RuntimeError(
                        f"rate limited {RATE_LIMIT_TRIES} times with 429 for {what}: {_status(response)}"
                    )
                time.sleep(RATE_LIMIT_SECONDS_BASE * attempt)
                continue
            if response.status_code == 404 and index < last_arch:
                log.warning(
                    "could not find config for build_id=%s kernel_commit=%s architecture=%s",
                    build_id,
                    kernel_commit,
                    arch,
                )
                continue
            if response.status_code > 299:
                raise RuntimeError(f"could not get 2XX response for {what}: {_status(response)}")
            return response.text
    return ""


def decode_kernel_config(build_id: str, kernel_commit: str, encoded_kernel_config: str) -> str:
    """Decode a base64 kernel config; line breaks in the encoding are ignored."""
    cleaned = encoded_kernel_config.replace("\r", "").replace("\n", "")
    try:
        decoded = base64.b64decode(cleaned, validate=True)
    except (binascii.Error, ValueError) as err:
        raise ValueError(
            f"could not base64 decode kernel config for build id {build_id} (kernel commit {kernel_commit}): {err}"
        ) from err
    return decoded.decode("utf-8", errors="replace")


def _add_sources_and_configuration(client: DockerClient, kp: KernelPackage, version: Version, session: Any) -> None:
    # Falco needs no COS kernel sources, so the sources volume stays empty.
    kernel_commit = read_kernel_commit(version.build_id, session)
    encoded = read_kernel_config(version.build_id, kernel_commit, session)
    kernel_config = decode_kernel_config(version.build_id, kernel_commit, encoded)

    kp.kernel_configuration = client.create_volume()
    kp.kernel_sources = client.create_volume()
    client.run(
        RunOptions(
            image=BUSYBOX_IMAGE,
            entrypoint=["/bin/sh"],
            cmd=["-c", _MAKE_DIRS_TEMPLATE.format(kp.kernel_release)],
            volumes={kp.kernel_sources: "/usr/src/", kp.kernel_configuration: "/lib/modules/"},
        )
    )
    client.write_file_to_volume(
        kp.kernel_configuration, "/lib/modules/", f"/lib/modules/{kp.kernel_release}/config", kernel_config
    )


def _add_os_release(client: DockerClient, kp: KernelPackage, version: Version) -> None:
    os_release = _OS_RELEASE_TEMPLATE.format(milestone=version.milestone, build_id=version.build_id)
    volume = client.create_volume()
    client.write_file_to_volume(volume, "/host/etc/", "/host/etc/os-release", os_release)
    contents = client.get_file_from_volume(volume, "/host/etc/", "/host/etc/os-release")
    kp.os_release = contents.decode("utf-8", errors="replace") if isinstance(contents, bytes) else contents


def new_kernel_package(client: DockerClient, name: str, session: Any = None) -> KernelPackage:
    """Return a fully populated kernel package for a COS image name."""
    session = _session(session)
    kp = KernelPackage(operating_system=OPERATING_SYSTEM, name=name)
    version = parse_version(name)
    headers = read_kernel_headers(version.build_id, session)
    extract_kernel_details(version.build_id, headers, kp)
    _add_sources_and_configuration(client, kp, version, session)
    _add_os_release(client, kp, version)
    return kp