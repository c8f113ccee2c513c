"""Entry points of the falcoprobes command-line tools."""

from __future__ import annotations

import os
from collections.abc import Iterator, Sequence
from contextlib import contextmanager

from falcoprobes.cli import new_parser, parse_flags
from falcoprobes.dockerclient import must_client
from falcoprobes.driverbuilder import build_ebpf_probe, build_image, get_driver_version
from falcoprobes.ghreleases import GHReleases
from falcoprobes.logsetup import get_logger
from falcoprobes.releasenotes import set_release_notes
from falcoprobes.resolver import OPERATING_SYSTEMS, UnsupportedOperatingSystemError, resolve_operating_system

log = get_logger("commands")


@contextmanager
def _fatal(message: str) -> Iterator[None]:
    """Log any exception raised in the block and exit with status 1."""
    try:
        yield
    except Exception as err:
        log.error("%s: %s", message, err)
        raise SystemExit(1) from err


def _check_operating_system(name: str) -> None:
    if name not in OPERATING_SYSTEMS:
        with _fatal("could not get operating system"):
            raise UnsupportedOperatingSystemError(name)


def _read_dockerfile(path: str) -> str:
    with _fatal("could not read falco-driver-builder Dockerfile"):
        with open(path, encoding="utf-8") as dockerfile:
            return dockerfile.read()


def _add_falco_version(parser) -> None:
    parser.add_argument(
        "--falco_version", required=True, help="The version of Falco to compile probes against"
    )
    parser.add_argument(
        "--dockerfile", required=True, help="Path to the Dockerfile of the falco-driver-builder image"
    )


def _add_token(parser, flag: str) -> None:
    token = os.environ.get("GITHUB_TOKEN") or None
    parser.add_argument(
        flag,
        dest="token",
        default=token,
        required=token is None,
        help="The token to use to authenticate against github [$GITHUB_TOKEN]",
    )


def build_probe_main(argv: Sequence[str] | None = None) -> int:
    """Build the Falco eBPF probe for one kernel package of an operating system."""
    parser = new_parser(description="Build a Falco eBPF probe for a kernel package")
    _add_falco_version(parser)
    parser.add_argument("operating_system")
    parser.add_argument("kernel_package")
    args = parse_flags(parser, argv)

    _check_operating_system(args.operating_system)
    dockerfile = _read_dockerfile(args.dockerfile)
    client = must_client()

    log.info("Resolving operating system operating_system=%s", args.operating_system)
    with _fatal("could not get operating system"):
        operating_system = resolve_operating_system(client, args.operating_system)
    with _fatal("could not get kernel package"):
        kernel_package = operating_system.get_kernel_package_by_name(args.kernel_package)
    with _fatal("could not build eBPF probe"):
        build_ebpf_probe(client, args.falco_version, operating_system, kernel_package, dockerfile)
    with _fatal("could not remove docker volume(s)"):
        client.remove_volumes(kernel_package.kernel_sources, kernel_package.kernel_configuration)
    return 0


def is_uploaded_main(argv: Sequence[str] | None = None) -> int:
    """Return 0 if the probe for a kernel package is already released, 1 if it is not."""
    parser = new_parser(description="Check whether a Falco eBPF probe has been uploaded")
    _add_falco_version(parser)
    group = parser.add_argument_group("github_releases")
    _add_token(group, "--github_releases_token")
    parser.add_argument("operating_system")
    parser.add_argument("kernel_package")
    args = parse_flags(parser, argv)

    _check_operating_system(args.operating_system)
    dockerfile = _read_dockerfile(args.dockerfile)
    client = must_client()
    repository = GHReleases(args.token)

    log.info("Verifying input falco_version=%s", args.falco_version)
    with _fatal("Could not get driver builder image for provided falco_version"):
        builder_image = build_image(client, args.falco_version, dockerfile)
    with _fatal("Could not get driver version for provided falco_version"):
        driver_version = get_driver_version(client, builder_image)

    log.info("Verifying input operating_system=%s", args.operating_system)
    with _fatal("Could not get operating system"):
        operating_system = resolve_operating_system(client, args.operating_system)

    log.info("Verifying input kernel_package=%s", args.kernel_package)
    with _fatal("Could not get kernel package"):
        kernel_package = operating_system.get_kernel_package_by_name(args.kernel_package)
    with _fatal("kernel package validation failed"):
        kernel_package.validate()

    probe_name = kernel_package.probe_name() + ".o"
    log.info(
        "Identifying if falco ebpf probe uploaded driverVersion=%s probeName=%s",
        driver_version,
        probe_name,
    )
    with _fatal("Probe cannot be found"):
        mirrored = repository.is_already_mirrored(driver_version, probe_name)
    return 0 if mirrored else 1


def list_kernel_packages_main(argv: Sequence[str] | None = None) -> int:
    """Print, or write to a file, the kernel package names of an operating system."""
    parser = new_parser(description="List the kernel packages of an operating system")
    parser.add_argument(
        "--out_file",
        default="",
        help="The path to a file to output a list of Falco probes too (default: output to stdout)",
    )
    parser.add_argument("operating_system")
    args = parse_flags(parser, argv)

    _check_operating_system(args.operating_system)
    client = must_client()

    log.info("Resolving operating system operating_system=%s", args.operating_system)
    with _fatal("could not get operating system"):
        operating_system = resolve_operating_system(client, args.operating_system)

    log.info("Getting kernel package names operating_system=%s", args.operating_system)
    with _fatal("could not get kernel package names"):
        names = operating_system.get_kernel_package_names()
    log.info("got kernel packages amount=%d operating_system=%s", len(names), args.operating_system)

    output = "\n".join(names)
    if args.out_file:
        with open(args.out_file, "w", encoding="utf-8") as out:
            out.write(output)
        log.info("wrote kernel package names to file path=%s", args.out_file)
        return 0
    print(output)
    return 0


def release_notes_main(argv: Sequence[str] | None = None) -> int:
    """Rewrite the notes of every release as a table of its probes."""
    parser = new_parser(description="Update release notes with the list of released probes")
    _add_token(parser, "--token")
    args = parse_flags(parser, argv)

    repository = GHReleases(args.token)
    with _fatal("unable to get list of previously releases"):
        releases = repository.get_releases()
    with _fatal("could not update release notes"):
        set_release_notes(releases, repository)
    return 0