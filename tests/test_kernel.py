import pytest

from falcoprobes.kernel import KernelPackage, OperatingSystem


@pytest.mark.parametrize(
    "kernel_package, expected",
    [
        (
            KernelPackage(
                operating_system="ubuntu",
                kernel_release="4.15.0-147-generic",
                kernel_version="#151-Ubuntu SMP Fri Jun 18 19:21:19 UTC 2021",
            ),
            "falco_ubuntu_4.15.0-147-generic_151",
        ),
        (
            KernelPackage(
                operating_system="amazonlinux2",
                kernel_release="4.14.143-118.123.amzn2.x86_64",
                kernel_version="#1 SMP Thu Sep 12 16:54:23 UTC 2019",
            ),
            "falco_amazonlinux2_4.14.143-118.123.amzn2.x86_64_1",
        ),
        (
            KernelPackage(
                operating_system="cos",
                kernel_release="5.15.65",
                kernel_version="#1 SMP Thu Nov 10 10:13:28 UTC 2022",
            ),
            "falco_cos_5.15.65_1",
        ),
    ],
)
def test_kernel_package_probe_name(kernel_package, expected):
    assert kernel_package.probe_name() == expected


def test_probe_name_without_build_number():
    kp = KernelPackage(operating_system="cos", kernel_release="5.15.65", kernel_version="SMP")
    assert kp.probe_name() == "falco_cos_5.15.65_"


def test_validated_package_keeps_probe_name():
    kp = KernelPackage(
        operating_system="cos",
        kernel_release="5.15.65",
        kernel_version="#1 SMP Thu Nov 10 10:13:28 UTC 2022",
    )
    kp.validate()
    assert kp.operating_system in kp.probe_name()
    assert kp.probe_name() == "falco_cos_5.15.65_1"


def test_operating_system_is_abstract():
    with pytest.raises(TypeError):
        OperatingSystem()