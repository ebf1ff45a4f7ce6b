# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.

"""Loading of the build configuration and the package manifest."""

import dataclasses
import hashlib
import pathlib
import tomllib
from typing import Optional

import jsonschema
import yaml

from .platforms import (
    ConfigParseError,
    PlatformDescriptor,
    native_triple,
    parse_platform,
)
from .variants import AllocatorVariant, parse_allocator

STORAGE_BUILD_SCHEMA = {
    "type": "object",
    "properties": {
        "include_dir": {"type": "string"},
        "lib_dir": {"type": "string"},
    },
    "required": ["include_dir", "lib_dir"],
    "additionalProperties": False,
}

TOOLCHAIN_SCHEMA = {
    "type": "object",
    "properties": {
        "cc": {"type": "string"},
        "cxx": {"type": "string"},
        "linker": {"type": "string"},
        "cxx_lib_dir": {"type": "string"},
        "static": {"type": "boolean"},
        "llvm": {"type": "boolean"},
    },
    "additionalProperties": False,
}

CONFIG_SCHEMA = {
    "type": "object",
    "properties": {
        "package": {
            "type": "object",
            "properties": {
                "manifest": {"type": "string"},
                "include": {"type": "array", "items": {"type": "string"}},
                "binary": {"type": "string"},
            },
            "required": ["manifest", "include"],
            "additionalProperties": False,
        },
        "build_platform": {"type": "string"},
        "targets": {"type": "array", "items": {"type": "string"}},
        "allocators": {
            "type": "array",
            "items": {"enum": [a.value for a in AllocatorVariant]},
        },
        "toolchains": {
            "type": "object",
            "additionalProperties": TOOLCHAIN_SCHEMA,
        },
        "storage": {
            "type": "object",
            "properties": {
                "default": STORAGE_BUILD_SCHEMA,
                "jemalloc": STORAGE_BUILD_SCHEMA,
            },
            "required": ["default"],
            "additionalProperties": False,
        },
        "image": {
            "type": "object",
            "properties": {
                "tag": {"type": "string"},
                "ca_bundle": {"type": "string"},
                "init": {"type": "string"},
            },
            "additionalProperties": False,
        },
        "docker": {
            "type": "object",
            "properties": {
                "image": {"type": "string"},
                "rust_version": {"type": "string"},
            },
            "additionalProperties": False,
        },
    },
    "required": ["package", "storage"],
    "additionalProperties": False,
}

DEFAULT_IMAGE_SETTINGS = {
    "tag": "main",
    "ca_bundle": "/etc/ssl/certs/ca-certificates.crt",
    "init": "/usr/bin/tini",
}

DEFAULT_DOCKER_SETTINGS = {
    "image": "build",
    "rust_version": "stable",
}


@dataclasses.dataclass(frozen=True)
class PackageDescription:
    name: str
    version: str
    binary: str
    root: pathlib.Path
    include: tuple

    def source_files(self):
        """Obtain the relative paths of every source file, sorted."""
        files = []

        for entry in self.include:
            path = self.root / entry

            if path.is_dir():
                files.extend(
                    p.relative_to(self.root)
                    for p in path.rglob("*")
                    if p.is_file()
                )
            elif path.exists():
                files.append(pathlib.Path(entry))
            else:
                raise ConfigParseError("package source path does not exist: %s" % path)

        return sorted(files)

    def fingerprint(self) -> str:
        """Content hash of the package name, version and source files."""
        h = hashlib.sha256()
        h.update(("%s\0%s\0" % (self.name, self.version)).encode("utf-8"))

        for rel in self.source_files():
            h.update(str(rel.as_posix()).encode("utf-8") + b"\0")
            h.update((self.root / rel).read_bytes())
            h.update(b"\0")

        return h.hexdigest()


def read_package_description(root: pathlib.Path, settings) -> PackageDescription:
    manifest_path = root / settings["manifest"]

    try:
        with manifest_path.open("rb") as fh:
            manifest = tomllib.load(fh)
    except FileNotFoundError:
        raise ConfigParseError("package manifest not found: %s" % manifest_path)
    except tomllib.TOMLDecodeError as e:
        raise ConfigParseError("invalid package manifest %s: %s" % (manifest_path, e))

    package = manifest.get("package", {})

    for key in ("name", "version"):
        if not isinstance(package.get(key), str):
            raise ConfigParseError(
                "package manifest %s lacks package.%s" % (manifest_path, key)
            )

    return PackageDescription(
        name=package["name"],
        version=package["version"],
        binary=settings.get("binary", package["name"]),
        root=root,
        include=tuple(settings["include"]),
    )


class BuildConfig(object):
    def __init__(self, data, root: pathlib.Path, native: Optional[str] = None):
        self.data = data
        self.root = root

        self.toolchains = data.get("toolchains", {})
        self.storage = data["storage"]
        self.image = dict(DEFAULT_IMAGE_SETTINGS, **data.get("image", {}))
        self.docker = dict(DEFAULT_DOCKER_SETTINGS, **data.get("docker", {}))

        self.build_triple = native or data.get("build_platform") or native_triple()
        self.target_triples = list(data.get("targets", []))
        self.allocators = [parse_allocator(a) for a in data.get("allocators", [])]

        if not self.allocators:
            self.allocators = [AllocatorVariant.DEFAULT]

        if AllocatorVariant.JEMALLOC in self.allocators and "jemalloc" not in self.storage:
            raise ConfigParseError("jemalloc allocator requires a storage.jemalloc build")

        if len(set(self.target_triples)) != len(self.target_triples):
            raise ConfigParseError("duplicate entries in targets")

        # Fail on bad identifiers before anything is built.
        for triple in [self.build_triple, *self.toolchains, *self.target_triples]:
            self.descriptor(triple)

    def descriptor(self, triple: str) -> PlatformDescriptor:
        settings = self.toolchains.get(triple, {})

        return parse_platform(
            triple, static=settings.get("static"), llvm=settings.get("llvm")
        )

    def targets(self):
        return [self.descriptor(t) for t in self.target_triples]

    def package_description(self) -> PackageDescription:
        return read_package_description(self.root, self.data["package"])


def load_config(path: pathlib.Path, native: Optional[str] = None) -> BuildConfig:
    """Loads and validates a crossbuild.yml file."""
    try:
        with path.open("r", encoding="utf-8") as fh:
            data = yaml.load(fh, Loader=yaml.SafeLoader)
    except FileNotFoundError:
        raise ConfigParseError("configuration file not found: %s" % path)
    except yaml.YAMLError as e:
        raise ConfigParseError("invalid YAML in %s: %s" % (path, e))

    try:
        jsonschema.validate(data, CONFIG_SCHEMA)
    except jsonschema.ValidationError as e:
        raise ConfigParseError("invalid configuration %s: %s" % (path, e.message))

    return BuildConfig(data, path.parent, native=native)
