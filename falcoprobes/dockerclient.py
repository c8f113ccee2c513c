"""Building images, running containers and moving files through Docker volumes."""

from __future__ import annotations

import json
import posixpath
from collections.abc import Mapping
from dataclasses import dataclass, field

from falcoprobes.dockerapi import DockerAPI, DockerAPIError, docker_api_from_env
from falcoprobes.dockerstreams import (
    container_output,
    dockerfile_only_context,
    extract_single_file,
    parse_build_or_pull_output,
    single_file_archive,
)
from falcoprobes.logsetup import get_logger

log = get_logger("docker")

# The smallest image a container can be created from without building one.
BUSYBOX_IMAGE = "docker.io/library/busybox:1.33.1"


@dataclass
class BuildOptions:
    """What to build: Dockerfile contents, build arguments and tags."""

    dockerfile: str
    build_args: dict[str, str | None] = field(default_factory=dict)
    tags: list[str] = field(default_factory=list)


@dataclass
class RunOptions:
    """How to run a container; ``volumes`` maps volume names to mount paths."""

    image: str
    entrypoint: list[str] = field(default_factory=list)
    cmd: list[str] = field(default_factory=list)
    volumes: dict[str, str] = field(default_factory=dict)
    working_dir: str = ""
    env: dict[str, str] = field(default_factory=dict)


class ContainerExitError(RuntimeError):
    """Raised when a container exits with a non-zero code; carries its output."""

    def __init__(self, exit_code: int, command: str, output: str) -> None:
        super().__init__(f"non-zero exit-code ({exit_code}) for: {command}\n{output}")
        self.exit_code = exit_code
        self.command = command
        self.output = output


def container_volumes(volumes: Mapping[str, str]) -> dict[str, dict]:
    """Return the container-config volume set: each mount path to an empty object."""
    return {mount: {} for mount in volumes.values()}


def host_config(volumes: Mapping[str, str]) -> dict[str, list[str]] | None:
    """Return a host config binding each volume to its mount path, or None without volumes."""
    if not volumes:
        return None
    return {"Binds": [f"{volume}:{mount}" for volume, mount in volumes.items()]}


def env_list(env: Mapping[str, str]) -> list[str]:
    """Return environment variables as ``KEY=value`` strings."""
    return [f"{key}={value}" for key, value in env.items()]


def _pull_params(image: str) -> dict[str, str]:
    if "@" in image:
        name, digest = image.split("@", 1)
        return {"fromImage": name, "tag": digest}
    name, sep, tag = image.rpartition(":")
    if sep and "/" not in tag:
        return {"fromImage": name, "tag": tag}
    return {"fromImage": image, "tag": "latest"}


def _local_image_name(image: str) -> str:
    if image.startswith("docker.io/"):
        image = image[len("docker.io/"):]
        if image.startswith("library/"):
            image = image[len("library/"):]
    return image


def _debug_logger(context: str):
    def log_line(text: str) -> None:
        line = text.strip()
        if line:
            log.debug("%s %s", context, line)

    return log_line


class DockerClient:
    """High-level Docker operations used to build probes."""

    def __init__(self, api: DockerAPI | None = None) -> None:
        self.api = api if api is not None else docker_api_from_env()

    def build(self, opts: BuildOptions) -> None:
        """Build an image from the given Dockerfile contents."""
        context = dockerfile_only_context(opts.dockerfile)
        chunks = self.api.stream(
            "POST",
            "/build",
            params={
                "t": list(opts.tags),
                "pull": True,
                "rm": True,
                "dockerfile": "Dockerfile",
                "buildargs": json.dumps(opts.build_args),
            },
            data=context,
            headers={"Content-Type": "application/x-tar"},
        )
        parse_build_or_pull_output(chunks, _debug_logger(f"tags={opts.tags}"))

    def ensure_image(self, image: str) -> None:
        """Pull ``image`` unless it is already present locally."""
        if self._image_exists(image):
            return
        chunks = self.api.stream("POST", "/images/create", params=_pull_params(image))
        parse_build_or_pull_output(chunks, _debug_logger(f"image={image}"))

    def _image_exists(self, image: str) -> bool:
        wanted = _local_image_name(image)
        images = self.api.request("GET", "/images/json") or []
        return any(wanted in (entry.get("RepoTags") or ()) for entry in images)

    def _create_container(self, config: dict) -> str:
        created = self.api.request("POST", "/containers/create", json_body=config)
        return created["Id"]

    def _remove_container(self, container_id: str, remove_volumes: bool = False) -> None:
        params = {"v": True} if remove_volumes else None
        self.api.request("DELETE", f"/containers/{container_id}", params=params)

    def run(self, opts: RunOptions) -> str:
        """Run a container to completion and return its output.

        Raises ContainerExitError if the container exits with a non-zero code.
        """
        log.debug("docker run image=%s entrypoint=%s cmd=%s", opts.image, opts.entrypoint, opts.cmd)
        self.ensure_image(opts.image)
        config = {
            "Image": opts.image,
            "Entrypoint": list(opts.entrypoint) or None,
            "Cmd": list(opts.cmd) or None,
            "Volumes": container_volumes(opts.volumes),
            "Tty": True,
            "WorkingDir": opts.working_dir,
            "Env": env_list(opts.env),
        }
        binds = host_config(opts.volumes)
        if binds is not None:
            config["HostConfig"] = binds
        container_id = self._create_container(config)
        try:
            self.api.request("POST", f"/containers/{container_id}/start")
            logs = self.api.stream(
                "GET",
                f"/containers/{container_id}/logs",
                params={"stdout": True, "stderr": True, "follow": True},
            )
            output = container_output(
                logs, _debug_logger(f"image={opts.image} entrypoint={opts.entrypoint} cmd={opts.cmd}")
            )
            self.api.request("POST", f"/containers/{container_id}/wait", params={"condition": "not-running"})
            inspect = self.api.request("GET", f"/containers/{container_id}/json")
        finally:
            self._remove_container(container_id, remove_volumes=True)
        exit_code = inspect["State"]["ExitCode"]
        if exit_code != 0:
            raise ContainerExitError(exit_code, " ".join([*opts.entrypoint, *opts.cmd]), output)
        return output

    def create_volume(self) -> str:
        """Create a new volume and return its name."""
        return self.api.request("POST", "/volumes/create", json_body={})["Name"]

    def remove_volumes(self, *volumes: str) -> None:
        """Remove the given volumes, raising DockerAPIError listing any that failed."""
        errors = []
        for volume in volumes:
            try:
                self.api.request("DELETE", f"/volumes/{volume}", params={"force": False})
            except DockerAPIError as err:
                errors.append(f"{volume}: {err}")
        if errors:
            raise DockerAPIError("could not remove docker volume(s): " + "; ".join(errors))

    def _volume_container(self, volume: str, volume_mount: str) -> str:
        volumes = {volume: volume_mount}
        config = {
            "Image": BUSYBOX_IMAGE,
            "Volumes": container_volumes(volumes),
            "Tty": False,
            "HostConfig": host_config(volumes),
        }
        return self._create_container(config)

    def write_file_to_volume(self, volume: str, volume_mount: str, path: str, contents: str | bytes) -> None:
        """Write ``contents`` to ``path`` inside ``volume`` mounted at ``volume_mount``."""
        self.ensure_image(BUSYBOX_IMAGE)
        container_id = self._volume_container(volume, volume_mount)
        try:
            archive = single_file_archive(posixpath.basename(path), contents)
            try:
                self.api.request(
                    "PUT",
                    f"/containers/{container_id}/archive",
                    params={"path": posixpath.dirname(path)},
                    data=archive,
                    headers={"Content-Type": "application/x-tar"},
                )
            except DockerAPIError as err:
                raise DockerAPIError(f"could not copy to container: {err}", status=err.status) from err
        finally:
            self._remove_container(container_id)

    def get_file_from_volume(self, volume: str, volume_mount: str, path: str) -> bytes:
        """Return the contents of the file at ``path`` inside ``volume`` mounted at ``volume_mount``."""
        self.ensure_image(BUSYBOX_IMAGE)
        container_id = self._volume_container(volume, volume_mount)
        try:
            archive = self.api.request("GET", f"/containers/{container_id}/archive", params={"path": path})
            return extract_single_file(archive or b"")
        finally:
            self._remove_container(container_id)


def must_client() -> DockerClient:
    """Return a client for the Docker daemon configured by the environment."""
    return DockerClient(docker_api_from_env())