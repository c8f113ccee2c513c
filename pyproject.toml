[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "falcoprobes"
version = "0.1.0"
description = "Build Falco eBPF probes for Amazon Linux 2 and Container-Optimized OS kernels and mirror them to GitHub Releases"
requires-python = ">=3.10"
keywords = ["falco", "ebpf", "probe", "kernel", "docker", "github-releases", "amazonlinux2", "cos"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Build Tools",
    "Topic :: System :: Operating System Kernels :: Linux",
]
dependencies = [
    "requests",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
build-falco-ebpf-probe = "falcoprobes.commands:build_probe_main"
is-falco-ebpf-probe-uploaded = "falcoprobes.commands:is_uploaded_main"
list-kernel-packages = "falcoprobes.commands:list_kernel_packages_main"
release-notes = "falcoprobes.commands:release_notes_main"

[tool.hatch.build.targets.wheel]
packages = ["falcoprobes"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
