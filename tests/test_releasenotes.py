import pytest

from falcoprobes.releasenotes import (
    ReleasedProbe,
    compare_kernel_packages,
    kernel_package_from_probe_name,
    list_kernel_packages_to_compile,
    parse_probes_from_release_notes,
    released_probe_from_markdown_row,
    render_release_notes,
    set_release_notes,
    sort_released_probes,
)
from falcoprobes.releases import Release, ReleaseAsset


def test_to_markdown_row():
    assert ReleasedProbe(probe="probe", kernel_package="kp").to_markdown_row() == "|kp|probe|"


def test_released_probe_from_markdown_row():
    rp = ReleasedProbe(probe="a", kernel_package="hi")
    assert released_probe_from_markdown_row(rp.to_markdown_row()) == rp

    empty = ReleasedProbe()
    assert released_probe_from_markdown_row("just a random string") == empty
    assert released_probe_from_markdown_row("|nope|") == empty
    assert released_probe_from_markdown_row("|too|many|rows|in|this|table|") == empty


def test_header_and_separator_rows_are_not_probes():
    assert released_probe_from_markdown_row("| Kernel Package | Probe |") == ReleasedProbe()
    assert released_probe_from_markdown_row("|----------------|-------|") == ReleasedProbe()


@pytest.mark.parametrize(
    "probe_name, expected",
    [
        ("falco_amazonlinux2_4.14.101-91.76.amzn2.x86_64_1.o", "4.14.101-91.76.amzn2"),
        (
            "falco_amazonlinux2_1.2.3.4.5.6.7.8.9-10.11.amzn2.x86_64_1.o",
            "1.2.3.4.5.6.7.8.9-10.11.amzn2",
        ),
        ("falco_notamazon_1.2.3.4.5.6.7.8.9-10.11.ubuntu.x86_64_1.o", ""),
    ],
)
def test_kernel_package_from_probe_name(probe_name, expected):
    assert kernel_package_from_probe_name(probe_name) == expected


def test_kernel_package_from_malformed_probe_name():
    with pytest.raises(ValueError):
        kernel_package_from_probe_name("probe.amzn2.o")


@pytest.mark.parametrize(
    "probes",
    [
        [
            ReleasedProbe(kernel_package="1.bb", probe="2"),
            ReleasedProbe(kernel_package="1.baa.ab", probe="4"),
            ReleasedProbe(kernel_package="2.aa", probe="0"),
            ReleasedProbe(kernel_package="1.ba.ba", probe="6"),
            ReleasedProbe(kernel_package="1.baa.ba", probe="3"),
            ReleasedProbe(kernel_package="1.cb", probe="1"),
            ReleasedProbe(kernel_package="1.ba.ba.a", probe="5"),
        ],
        [
            ReleasedProbe(kernel_package="2.aa", probe="0"),
            ReleasedProbe(kernel_package="1.cb", probe="1"),
            ReleasedProbe(kernel_package="1.bb", probe="2"),
            ReleasedProbe(kernel_package="1.baa.ba", probe="3"),
            ReleasedProbe(kernel_package="1.baa.ab", probe="4"),
            ReleasedProbe(kernel_package="1.ba.ba.a", probe="5"),
            ReleasedProbe(kernel_package="1.ba.ba", probe="6"),
        ],
        [
            ReleasedProbe(kernel_package="1.bb.ab", probe="0"),
            ReleasedProbe(kernel_package="1.bb", probe="1"),
        ],
    ],
    ids=["standard sort", "already sorted", "different lengths"],
)
def test_sort_released_probes(probes):
    result = sort_released_probes(probes, reverse=True)
    assert [p.probe for p in result] == [str(i) for i in range(len(probes))]


def test_numeric_elements_compare_numerically():
    assert compare_kernel_packages("1.2", "1.11") == -1
    assert compare_kernel_packages("1.11", "1.2") == 1
    assert compare_kernel_packages("1.2", "1.2") == 0


def _stub_releases(*probes_by_release):
    return [
        Release(id=i, assets=[ReleaseAsset(name=name) for name in names])
        for i, names in enumerate(probes_by_release)
    ]


class _StubReleaseEditor:
    def __init__(self, releases):
        self.releases = releases

    def edit_release_notes_by_release_id(self, release_id, body):
        for release in self.releases:
            if release.id == release_id:
                release.body = body
                break

    def body(self, release_id):
        return next(r.body for r in self.releases if r.id == release_id)


def test_set_release_notes():
    releases = _stub_releases(
        [
            "falco_amazonlinux2_4.14.238-182.422.amzn2.x86_64_1.o",
            "falco_amazonlinux2_4.14.26-54.32.amzn2.x86_64_1.o",
            "falco_amazonlinux2_4.14.33-59.34.amzn2.x86_64_1.o",
        ],
        [
            "falco_amazonlinux2_4.14.238-182.422.amzn2.x86_64_1.o",
            "falco_amazonlinux2_4.14.26-54.32.amzn2.x86_64_1.o",
        ],
        ["falco_amazonlinux2_4.14.238-182.422.amzn2.x86_64_1.o"],
    )
    editor = _StubReleaseEditor(releases)
    set_release_notes(releases, editor)

    assert editor.body(0) == (
        "\n# Probes\n| Kernel Package | Probe |\n|----------------|-------|\n"
        "|4.14.238-182.422.amzn2|falco_amazonlinux2_4.14.238-182.422.amzn2.x86_64_1.o|\n"
        "|4.14.33-59.34.amzn2|falco_amazonlinux2_4.14.33-59.34.amzn2.x86_64_1.o|\n"
        "|4.14.26-54.32.amzn2|falco_amazonlinux2_4.14.26-54.32.amzn2.x86_64_1.o|\n"
    )
    assert editor.body(1) == (
        "\n# Probes\n| Kernel Package | Probe |\n|----------------|-------|\n"
        "|4.14.238-182.422.amzn2|falco_amazonlinux2_4.14.238-182.422.amzn2.x86_64_1.o|\n"
        "|4.14.26-54.32.amzn2|falco_amazonlinux2_4.14.26-54.32.amzn2.x86_64_1.o|\n"
    )
    assert editor.body(2) == (
        "\n# Probes\n| Kernel Package | Probe |\n|----------------|-------|\n"
        "|4.14.238-182.422.amzn2|falco_amazonlinux2_4.14.238-182.422.amzn2.x86_64_1.o|\n"
    )


def test_render_release_notes_without_rows():
    assert render_release_notes([]) == (
        "\n# Probes\n| Kernel Package | Probe |\n|----------------|-------|\n"
    )


def test_list_kernel_packages_to_compile():
    probes = [
        ReleasedProbe(kernel_package="kp1"),
        ReleasedProbe(kernel_package="kp1"),
        ReleasedProbe(kernel_package="kp1"),
        ReleasedProbe(kernel_package="kp2"),
        ReleasedProbe(kernel_package="kp2"),
        ReleasedProbe(kernel_package="kp3"),
        ReleasedProbe(kernel_package="kp3"),
        ReleasedProbe(kernel_package="kp3"),
        ReleasedProbe(kernel_package="kp4"),
    ]
    names = ["kp1", "kp2", "kp3", "kp4", "kp5"]
    assert list_kernel_packages_to_compile(probes, names, 3) == ["kp2", "kp4", "kp5"]
    assert names == ["kp1", "kp2", "kp3", "kp4", "kp5"]


def test_parse_probes_from_release_notes():
    release_notes = """
This is some cruft at the start of the release
# Probes
| Kernel Package | Probe |
|----------------|-------|
|4.14.243-185.433.amzn2|falco_amazonlinux2_4.14.243-185.433.amzn2.x86_64_1.o|
|4.14.241-184.433.amzn2|falco_amazonlinux2_4.14.241-184.433.amzn2.x86_64_1.o|
|4.14.238-182.422.amzn2|falco_amazonlinux2_4.14.238-182.422.amzn2.x86_64_1.o|
|4.14.238-182.421.amzn2|falco_amazonlinux2_4.14.238-182.421.amzn2.x86_64_1.o|
not a | probe
also|not|a|probe

this is some cruft at the end of the release"""

    expected = [
        ReleasedProbe(
            kernel_package="4.14.243-185.433.amzn2",
            probe="falco_amazonlinux2_4.14.243-185.433.amzn2.x86_64_1.o",
        ),
        ReleasedProbe(
            kernel_package="4.14.241-184.433.amzn2",
            probe="falco_amazonlinux2_4.14.241-184.433.amzn2.x86_64_1.o",
        ),
        ReleasedProbe(
            kernel_package="4.14.238-182.422.amzn2",
            probe="falco_amazonlinux2_4.14.238-182.422.amzn2.x86_64_1.o",
        ),
        ReleasedProbe(
            kernel_package="4.14.238-182.421.amzn2",
            probe="falco_amazonlinux2_4.14.238-182.421.amzn2.x86_64_1.o",
        ),
    ]
    assert parse_probes_from_release_notes(Release(body=release_notes)) == expected