# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.

"""Platform descriptors and the build/host/target triad."""

import dataclasses
import enum
import platform
import sys
from typing import Optional

KNOWN_ARCHES = {
    "aarch64",
    "armv7",
    "i686",
    "powerpc64le",
    "riscv64gc",
    "s390x",
    "x86_64",
}
KNOWN_VENDORS = {"apple", "pc", "unknown"}
KNOWN_OSES = {"darwin", "freebsd", "linux", "windows"}
KNOWN_ABIS = {"gnu", "gnueabihf", "msvc", "musl", "musleabihf"}


class ConfigParseError(Exception):
    """Represents an invalid build configuration value."""


class PlatformRole(enum.Enum):
    BUILD = "build"
    HOST = "host"
    TARGET = "target"


@dataclasses.dataclass(frozen=True)
class PlatformDescriptor:
    arch: str
    vendor: str
    os: str
    abi: Optional[str]
    is_static: bool
    is_llvm_toolchain: bool

    @property
    def triple(self) -> str:
        parts = [self.arch, self.vendor, self.os]
        if self.abi:
            parts.append(self.abi)

        return "-".join(parts)

    @property
    def is_darwin(self) -> bool:
        return self.os == "darwin"

    @property
    def is_aarch64(self) -> bool:
        return self.arch == "aarch64"

    @property
    def is_x86_64(self) -> bool:
        return self.arch == "x86_64"

    def __str__(self):
        return self.triple


def parse_platform(
    identifier: str, static: Optional[bool] = None, llvm: Optional[bool] = None
) -> PlatformDescriptor:
    """Parse a target triple into a PlatformDescriptor.

    ``static`` and ``llvm`` override the values implied by the triple.
    """
    if not isinstance(identifier, str):
        raise ConfigParseError("platform identifier is not a string: %r" % identifier)

    parts = identifier.split("-")

    if len(parts) not in (3, 4) or not all(parts):
        raise ConfigParseError("malformed platform identifier: %s" % identifier)

    arch, vendor, os_name = parts[0:3]
    abi = parts[3] if len(parts) == 4 else None

    if arch not in KNOWN_ARCHES:
        raise ConfigParseError(
            "unknown architecture in platform identifier %s: %s" % (identifier, arch)
        )
    if vendor not in KNOWN_VENDORS:
        raise ConfigParseError(
            "unknown vendor in platform identifier %s: %s" % (identifier, vendor)
        )
    if os_name not in KNOWN_OSES:
        raise ConfigParseError(
            "unknown operating system in platform identifier %s: %s"
            % (identifier, os_name)
        )
    if abi is not None and abi not in KNOWN_ABIS:
        raise ConfigParseError(
            "unknown ABI in platform identifier %s: %s" % (identifier, abi)
        )

    if static is None:
        static = abi in ("musl", "musleabihf")
    if llvm is None:
        llvm = os_name == "darwin"

    return PlatformDescriptor(
        arch=arch,
        vendor=vendor,
        os=os_name,
        abi=abi,
        is_static=static,
        is_llvm_toolchain=llvm,
    )


def native_triple() -> str:
    """Resolve the target triple of the machine we are running on."""
    machine = platform.machine().lower()

    if machine in ("arm64", "aarch64"):
        arch = "aarch64"
    elif machine in ("x86_64", "amd64"):
        arch = "x86_64"
    else:
        raise ConfigParseError("unhandled machine value: %s" % machine)

    if sys.platform == "linux":
        return "%s-unknown-linux-gnu" % arch
    elif sys.platform == "darwin":
        return "%s-apple-darwin" % arch
    else:
        raise ConfigParseError("unsupported build platform: %s" % sys.platform)


@dataclasses.dataclass(frozen=True)
class PlatformTriad:
    build: PlatformDescriptor
    host: PlatformDescriptor
    target: PlatformDescriptor

    def __post_init__(self):
        # Roles sharing a triple share toolchain variable names, so they must
        # agree on everything else too.
        seen = {}
        for role in PlatformRole:
            descriptor = self.for_role(role)
            other = seen.setdefault(descriptor.triple, descriptor)
            if other != descriptor:
                raise ConfigParseError(
                    "platform roles disagree on link settings for %s"
                    % descriptor.triple
                )

    def for_role(self, role: PlatformRole) -> PlatformDescriptor:
        return getattr(self, role.value)

    def is_cross_compiling(self) -> bool:
        return self.host != self.target or self.build != self.host

    def is_native(self) -> bool:
        return self.build == self.host == self.target

    def equal_pairs(self):
        """Obtain the role pairs whose platforms coincide."""
        pairs = set()
        roles = list(PlatformRole)
        for i, a in enumerate(roles):
            for b in roles[i + 1 :]:
                if self.for_role(a) == self.for_role(b):
                    pairs.add((a, b))

        return pairs

    def distinct_descriptors(self):
        """Obtain the unique descriptors in build, host, target order."""
        descriptors = []
        for role in PlatformRole:
            descriptor = self.for_role(role)
            if descriptor not in descriptors:
                descriptors.append(descriptor)

        return descriptors


def make_triad(
    build: PlatformDescriptor,
    host: Optional[PlatformDescriptor] = None,
    target: Optional[PlatformDescriptor] = None,
) -> PlatformTriad:
    host = host or build
    target = target or build

    return PlatformTriad(build=build, host=host, target=target)
