import pytest

from falcoprobes.amazonlinux2 import (
    NAME,
    YUM_DOWNLOADER_REPOSITORY,
    AmazonLinux2,
    build_yum_downloader,
    new_kernel_package,
    only_ebpf_compatible_package_names,
)
from falcoprobes.dockerapi import DockerAPIError

PACKAGE = "4.14.200-155.322.amzn2"
OS_RELEASE = b'NAME="Amazon Linux"\nVERSION="2"\n'


class FakeDockerClient:
    def __init__(self, package_list="", fail_build=False):
        self.package_list = package_list
        self.fail_build = fail_build
        self.builds = []
        self.runs = []
        self.file_requests = []
        self._volumes = 0

    def build(self, opts):
        if self.fail_build:
            raise DockerAPIError("boom")
        self.builds.append(opts)

    def create_volume(self):
        self._volumes += 1
        return f"vol{self._volumes}"

    def get_file_from_volume(self, volume, volume_mount, path):
        self.file_requests.append((volume, volume_mount, path))
        return OS_RELEASE

    def run(self, opts):
        self.runs.append(opts)
        command = " ".join(list(opts.entrypoint or []) + list(opts.cmd or []))
        if "yum --showduplicates" in command:
            return self.package_list
        if opts.entrypoint == ["find"]:
            return f"/usr/src/kernels/{PACKAGE}.x86_64\n"
        if "make kernelrelease" in command:
            return f"{PACKAGE}.x86_64\n"
        if "UTS_VERSION" in command:
            return "#1 SMP Thu Oct 15 20:11:12 UTC 2020\n"
        if "UTS_MACHINE" in command:
            return "x86_64\n"
        return ""


def test_only_ebpf_compatible_package_names_drops_old_kernels():
    names = ["4.9.77-41.59.amzn2", PACKAGE, "5.4.105-48.177.amzn2", "4.13.1-1.amzn2"]
    assert only_ebpf_compatible_package_names(names) == [PACKAGE, "5.4.105-48.177.amzn2"]


def test_only_ebpf_compatible_package_names_rejects_unparsable_name():
    with pytest.raises(ValueError):
        only_ebpf_compatible_package_names(["kernel"])


def test_build_yum_downloader_tags_image():
    client = FakeDockerClient()
    image = build_yum_downloader(client)
    assert image == f"{YUM_DOWNLOADER_REPOSITORY}:latest"
    assert client.builds[0].tags == [image]
    assert client.builds[0].dockerfile.startswith("FROM amazonlinux:2\n")


def test_build_yum_downloader_wraps_errors():
    with pytest.raises(DockerAPIError, match="could not build docker.io/thoughtmachine/falco-yumdownloader"):
        build_yum_downloader(FakeDockerClient(fail_build=True))


def test_get_name():
    assert AmazonLinux2(FakeDockerClient()).get_name() == NAME


def test_get_kernel_package_names():
    client = FakeDockerClient(package_list="4.9.77-41.59.amzn2\n" + PACKAGE + "\n5.4.105-48.177.amzn2\n")
    names = AmazonLinux2(client).get_kernel_package_names()
    assert names == [PACKAGE, "5.4.105-48.177.amzn2"]
    assert client.runs[0].image == f"{YUM_DOWNLOADER_REPOSITORY}:latest"


def test_get_kernel_package_names_build_failure():
    with pytest.raises(DockerAPIError, match="could not build falco-driver-loader"):
        AmazonLinux2(FakeDockerClient(fail_build=True)).get_kernel_package_names()


def test_get_kernel_package_by_name():
    client = FakeDockerClient()
    res = AmazonLinux2(client).get_kernel_package_by_name(PACKAGE)
    assert res.kernel_release == "4.14.200-155.322.amzn2.x86_64"
    assert res.kernel_version == "#1 SMP Thu Oct 15 20:11:12 UTC 2020"
    assert res.kernel_machine == "x86_64"
    assert 'NAME="Amazon Linux"' in res.os_release
    assert res.kernel_configuration
    assert res.kernel_sources
    assert res.operating_system == NAME
    assert res.name == PACKAGE


def test_new_kernel_package_mounts_and_downloads():
    client = FakeDockerClient()
    kp = new_kernel_package(client, PACKAGE)
    download = client.runs[0]
    assert f"yumdownloader kernel-{PACKAGE} kernel-devel-{PACKAGE}" in download.cmd[1]
    assert download.volumes == {kp.kernel_sources: "/usr/src/", kp.kernel_configuration: "/lib/modules/"}
    src_path = f"/usr/src/kernels/{PACKAGE}.x86_64"
    assert [run.working_dir for run in client.runs[-3:]] == [src_path] * 3
    assert client.file_requests[0][2] == "/host/etc/os-release"
    assert kp.probe_name() == "falco_amazonlinux2_4.14.200-155.322.amzn2.x86_64_1"