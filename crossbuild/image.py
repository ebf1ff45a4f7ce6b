# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.

"""Wrapping of built binaries into minimal container images.

Images contain a CA certificate bundle, the tini init process and the
binary, nothing else. The creation timestamp comes from the repository's
last commit date so rebuilding a revision yields identical image metadata.
"""

import calendar
import dataclasses
import hashlib
import io
import json
import pathlib
import tarfile
import time

import docker

from .docker import load_image_archive
from .logging import log
from .utils import RepoMetadata

CA_BUNDLE_PATH = "etc/ssl/certs/ca-certificates.crt"
INIT_PATH = "bin/tini"

OCI_ARCHITECTURES = {
    "aarch64": "arm64",
    "armv7": "arm",
    "i686": "386",
    "powerpc64le": "ppc64le",
    "riscv64gc": "riscv64",
    "x86_64": "amd64",
}


class PackagingFailure(Exception):
    """Represents a failure to assemble a container image."""


@dataclasses.dataclass(frozen=True)
class ImageSpec:
    name: str
    tag: str
    # YYYYMMDD
    created: str
    base_layers: tuple
    entrypoint: tuple
    cmd: tuple
    labels: tuple = ()
    architecture: str = "amd64"

    @property
    def reference(self) -> str:
        return "%s:%s" % (self.name, self.tag)

    @property
    def created_iso(self) -> str:
        return "%s-%s-%sT00:00:00Z" % (
            self.created[0:4],
            self.created[4:6],
            self.created[6:8],
        )

    @property
    def created_epoch(self) -> int:
        return calendar.timegm(time.strptime(self.created, "%Y%m%d"))

    def config(self):
        return {
            "architecture": self.architecture,
            "os": "linux",
            "created": self.created_iso,
            "config": {
                "Entrypoint": list(self.entrypoint),
                "Cmd": list(self.cmd),
                "Labels": dict(self.labels),
            },
            "rootfs": {"type": "layers", "diff_ids": []},
            "history": [{"created": self.created_iso, "created_by": "crossbuild"}],
        }


def oci_architecture(arch: str) -> str:
    return OCI_ARCHITECTURES.get(arch, arch)


def image_tag(base_tag: str, variant_label: str) -> str:
    if variant_label == "default":
        return base_tag

    return "%s-%s" % (base_tag, variant_label)


class ImagePackager(object):
    def __init__(self, name: str, metadata: RepoMetadata, settings):
        self.name = name
        self.metadata = metadata
        self.settings = settings

    def package(
        self, artifact: pathlib.Path, variant_label: str, architecture="amd64"
    ) -> ImageSpec:
        binary = _find_binary(artifact)

        return ImageSpec(
            name=self.name,
            tag=image_tag(self.settings["tag"], variant_label),
            created=self.metadata.last_modified_date,
            base_layers=(CA_BUNDLE_PATH,),
            entrypoint=("/%s" % INIT_PATH, "--"),
            cmd=("/bin/%s" % binary.name,),
            labels=(
                ("org.opencontainers.image.revision", self.metadata.version_extra),
                ("org.opencontainers.image.variant", variant_label),
            ),
            architecture=architecture,
        )

    def layer_files(self, artifact: pathlib.Path):
        binary = _find_binary(artifact)

        return {
            CA_BUNDLE_PATH: pathlib.Path(self.settings["ca_bundle"]),
            INIT_PATH: pathlib.Path(self.settings["init"]),
            "bin/%s" % binary.name: binary,
        }


def _find_binary(artifact: pathlib.Path) -> pathlib.Path:
    bin_dir = artifact / "bin"
    binaries = sorted(bin_dir.iterdir()) if bin_dir.is_dir() else []

    if len(binaries) != 1:
        raise PackagingFailure("expected exactly one binary in %s" % bin_dir)

    return binaries[0]


def _tar_member(tf, name, data: bytes, mode, mtime):
    ti = tarfile.TarInfo(name)
    ti.size = len(data)
    ti.mode = mode
    ti.mtime = mtime
    ti.uid = 0
    ti.gid = 0
    ti.uname = "root"
    ti.gname = "root"
    tf.addfile(ti, io.BytesIO(data))


def layer_archive(spec: ImageSpec, files) -> bytes:
    """Build a deterministic layer tarball from a {path: source} mapping."""
    buf = io.BytesIO()

    with tarfile.open(fileobj=buf, mode="w", format=tarfile.USTAR_FORMAT) as tf:
        for name in sorted(files):
            source = files[name]
            try:
                data = source.read_bytes()
            except OSError as e:
                raise PackagingFailure("unable to read %s: %s" % (source, e))

            mode = 0o644 if name == CA_BUNDLE_PATH else 0o755
            _tar_member(tf, name, data, mode, spec.created_epoch)

    return buf.getvalue()


def image_archive(spec: ImageSpec, files) -> bytes:
    """Build a docker-archive tarball loadable with ``docker load``."""
    layer = layer_archive(spec, files)
    layer_digest = hashlib.sha256(layer).hexdigest()

    config = spec.config()
    config["rootfs"]["diff_ids"] = ["sha256:%s" % layer_digest]
    config_data = json.dumps(config, sort_keys=True).encode("utf-8")
    config_name = "%s.json" % hashlib.sha256(config_data).hexdigest()

    manifest = [
        {
            "Config": config_name,
            "RepoTags": [spec.reference],
            "Layers": ["%s/layer.tar" % layer_digest],
        }
    ]
    manifest_data = json.dumps(manifest, sort_keys=True).encode("utf-8")

    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w", format=tarfile.USTAR_FORMAT) as tf:
        for name, data in sorted(
            [
                (config_name, config_data),
                ("%s/layer.tar" % layer_digest, layer),
                ("manifest.json", manifest_data),
            ]
        ):
            _tar_member(tf, name, data, 0o644, spec.created_epoch)

    return buf.getvalue()


def write_image_archive(spec: ImageSpec, files, dest: pathlib.Path) -> pathlib.Path:
    data = image_archive(spec, files)

    dest.parent.mkdir(parents=True, exist_ok=True)
    tmp = dest.with_name("%s.tmp" % dest.name)
    with tmp.open("wb") as fh:
        fh.write(data)
    tmp.rename(dest)

    log("wrote image %s to %s" % (spec.reference, dest))

    return dest


def load_image(client, archive: pathlib.Path):
    try:
        return load_image_archive(client, archive)
    except docker.errors.DockerException as e:
        raise PackagingFailure("unable to load %s: %s" % (archive, e))
