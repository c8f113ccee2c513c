# falcoprobes

Tools for compiling Falco eBPF probes against the kernels of managed
Linux distributions and publishing the results as GitHub release assets.

Supported operating systems:

- `amazonlinux2` — kernels from the Amazon Linux 2 yum repositories
  (including the `kernel-5.4` extras). Package names whose `major.minor`
  has a major of 4 or less and a minor below 14 are left out as not
  eBPF-capable.
- `cos` — Container-Optimized OS images from milestone 93 onwards, named
  like `cos-101-17162-40-34`. Build IDs ending in `.0.0`, and build IDs
  without published release artifacts, are left out.

Downloading kernel packages, building the driver builder image and
compiling the probe all happen inside Docker containers, so a reachable
Docker daemon is required. The daemon is located from `DOCKER_HOST`
(`unix://`, `tcp://`, `http://` or `https://`), falling back to the local
Unix socket; `DOCKER_API_VERSION`, `DOCKER_CERT_PATH` and
`DOCKER_TLS_VERIFY` are honoured as well.

## Installation

```
pip install falcoprobes
```

## Commands

Every command accepts `-v` / `--verbose` for debug logging and `-h` /
`--help` for usage. Any failure is logged and the command exits with
status 1.

### List kernel packages

```
list-kernel-packages amazonlinux2
list-kernel-packages cos --out_file cos-kernels.txt
```

Prints one kernel package name per line, or writes them to the file given
with `--out_file`.

### Build a probe

```
build-falco-ebpf-probe --falco_version 0.33.0 --dockerfile falco-driver-builder.Dockerfile amazonlinux2 4.14.200-155.322.amzn2
build-falco-ebpf-probe --falco_version 0.33.0 --dockerfile falco-driver-builder.Dockerfile cos cos-101-17162-40-34
```

The Dockerfile given with `--dockerfile` is built as
`docker.io/thoughtmachine/falco-driver-builder:<falco version>` with the
build arguments `FALCO_VERSION` and `UBUNTU_VERSION` (`22.04`). The
compiled probe is written to `dist/<driver version>/<probe name>.o`.

### Check whether a probe is already published

```
GITHUB_TOKEN=token is-falco-ebpf-probe-uploaded --falco_version 0.33.0 --dockerfile falco-driver-builder.Dockerfile cos cos-101-17162-40-34
```

The token may also be passed with `--github_releases_token`. Exits with
status 0 when the probe is an asset of the release named after the Falco
driver version, and 1 otherwise.

### Regenerate release notes

```
GITHUB_TOKEN=token release-notes
```

The token may also be passed with `--token`. Rewrites the body of every
release with a Markdown table of the `.o` probes it holds, most recent
kernel first.

## What is not included

The falco-driver-builder Dockerfile is not shipped with the package; the
commands that build or check probes need one supplied with `--dockerfile`.
Only the two operating systems above are supported; any other name is
rejected with `unsupported operating system`.

## Library use

The building blocks are importable too. Release-notes handling works
without Docker or network access:

```python
from falcoprobes.releasenotes import (
    ReleasedProbe,
    kernel_package_from_probe_name,
    render_release_notes,
)

probe = "falco_amazonlinux2_4.14.101-91.76.amzn2.x86_64_1.o"
row = ReleasedProbe(
    kernel_package=kernel_package_from_probe_name(probe),
    probe=probe,
).to_markdown_row()
print(render_release_notes([row]))
```

The probe name Falco expects for a kernel can be computed from a
`KernelPackage`:

```python
from falcoprobes.kernel import KernelPackage

kp = KernelPackage(
    operating_system="cos",
    name="cos-101-17162-40-34",
    kernel_release="5.15.65",
    kernel_version="#1 SMP Thu Nov 10 10:13:28 UTC 2022",
)
print(kp.probe_name())  # falco_cos_5.15.65_1
```

Other useful pieces include `falcoprobes.resolver.resolve_operating_system`,
`falcoprobes.dockerclient.DockerClient`, `falcoprobes.driverbuilder.build_ebpf_probe`,
`falcoprobes.ghreleases.GHReleases` and
`falcoprobes.parallel.run_parallel_and_collect_errors`.

## Running the tests

```
pip install -e .[test]
pytest
```