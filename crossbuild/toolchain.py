# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.

import dataclasses
import re
import shutil
from typing import Optional

from .platforms import PlatformDescriptor, PlatformRole, PlatformTriad

RE_NON_IDENTIFIER = re.compile("[^A-Za-z0-9]")

# Compilers used when the native platform has no explicit toolchain entry.
NATIVE_CC = "cc"
NATIVE_CXX = "c++"


class ToolchainUnavailable(Exception):
    """Represents a platform without a usable compiler or linker."""


def env_suffix(triple: str) -> str:
    """Normalize a target triple into an environment variable suffix."""
    return RE_NON_IDENTIFIER.sub("_", triple).upper()


@dataclasses.dataclass(frozen=True)
class ToolchainRoleKey:
    role: PlatformRole
    descriptor: PlatformDescriptor

    @property
    def suffix(self) -> str:
        return env_suffix(self.descriptor.triple)

    @property
    def cc_var(self) -> str:
        return "CC_%s" % self.suffix

    @property
    def cxx_var(self) -> str:
        return "CXX_%s" % self.suffix

    @property
    def linker_var(self) -> str:
        return "CARGO_TARGET_%s_LINKER" % self.suffix


@dataclasses.dataclass(frozen=True)
class Toolchain:
    cc: str
    cxx: str
    linker: str
    cxx_lib_dir: Optional[str] = None


@dataclasses.dataclass(frozen=True)
class ToolchainResolution:
    key: ToolchainRoleKey
    toolchain: Toolchain
    roles: tuple = ()

    @property
    def cc_var_name(self):
        return self.key.cc_var

    @property
    def cc_path(self):
        return self.toolchain.cc

    @property
    def cxx_var_name(self):
        return self.key.cxx_var

    @property
    def cxx_path(self):
        return self.toolchain.cxx

    @property
    def linker_var_name(self):
        return self.key.linker_var

    @property
    def linker_path(self):
        return self.toolchain.linker

    def variables(self):
        """Obtain the (name, value) bindings for this toolchain."""
        return [
            (self.cc_var_name, self.cc_path),
            (self.cxx_var_name, self.cxx_path),
            (self.linker_var_name, self.linker_path),
        ]


class ToolchainProvider(object):
    """Looks up provisioned compilers and linkers by target triple.

    Nothing is installed here. Entries come from the ``toolchains``
    section of the build configuration.
    """

    def __init__(self, entries, native_triple: str, check_paths=False):
        self.entries = entries
        self.native_triple = native_triple
        self.check_paths = check_paths

    def lookup(self, descriptor: PlatformDescriptor) -> Toolchain:
        triple = descriptor.triple
        settings = self.entries.get(triple)

        if settings is None:
            if triple != self.native_triple:
                raise ToolchainUnavailable("no toolchain configured for %s" % triple)

            settings = {}

        cc = settings.get("cc", NATIVE_CC)
        toolchain = Toolchain(
            cc=cc,
            cxx=settings.get("cxx", NATIVE_CXX),
            linker=settings.get("linker", cc),
            cxx_lib_dir=settings.get("cxx_lib_dir"),
        )

        if self.check_paths:
            for tool in (toolchain.cc, toolchain.cxx, toolchain.linker):
                if shutil.which(tool) is None:
                    raise ToolchainUnavailable(
                        "%s toolchain executable not found: %s" % (triple, tool)
                    )

        return toolchain


def resolve(
    role: PlatformRole, descriptor: PlatformDescriptor, provider: ToolchainProvider
) -> ToolchainResolution:
    return ToolchainResolution(
        key=ToolchainRoleKey(role, descriptor),
        toolchain=provider.lookup(descriptor),
        roles=(role,),
    )


def resolve_triad(triad: PlatformTriad, provider: ToolchainProvider):
    """Resolve toolchains for every role of a triad.

    Roles pinned to the same platform share a single resolution.
    Resolutions are returned in build, host, target order.
    """
    resolutions = []

    for descriptor in triad.distinct_descriptors():
        roles = tuple(r for r in PlatformRole if triad.for_role(r) == descriptor)
        resolution = resolve(roles[0], descriptor, provider)
        resolutions.append(dataclasses.replace(resolution, roles=roles))

    return resolutions
