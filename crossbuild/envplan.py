# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.

"""Assembly of the environment handed to the package builder.

A plan is assembled from four sections in a fixed order: base variables,
static-link variables, cross-link variables and per-role toolchain
variables. No two sections may bind the same variable.
"""

import collections.abc
import hashlib

from .platforms import PlatformDescriptor, PlatformTriad
from .toolchain import ToolchainProvider, ToolchainUnavailable, resolve_triad
from .variants import PackageVariant

SECTION_BASE = "base"
SECTION_STATIC = "static-link"
SECTION_CROSS = "cross-link"
SECTION_TOOLCHAIN = "toolchain"

SECTIONS = (SECTION_BASE, SECTION_STATIC, SECTION_CROSS, SECTION_TOOLCHAIN)

VERSION_EXTRA = "VERSION_EXTRA"
STORAGE_INCLUDE_DIR = "STORAGE_INCLUDE_DIR"
STORAGE_LIB_DIR = "STORAGE_LIB_DIR"
STORAGE_STATIC = "STORAGE_STATIC"
LINK_FLAGS = "CARGO_BUILD_RUSTFLAGS"
BUILD_TARGET = "CARGO_BUILD_TARGET"
FOR_BUILD_CC = "HOST_CC"
FOR_BUILD_CXX = "HOST_CXX"

STATIC_RELOCATION_FLAGS = ["-C", "relocation-model=static"]
LINK_LIBC_FLAGS = ["-l", "c"]


class EnvironmentConflict(AssertionError):
    """Represents an environment variable bound by more than one rule."""


class EnvironmentPlan(collections.abc.Mapping):
    """Immutable, ordered mapping of environment variables."""

    def __init__(self, entries):
        self._entries = []
        self._values = {}

        for section, key, value in entries:
            if section not in SECTIONS:
                raise ValueError("unknown environment section: %s" % section)

            if key in self._values:
                raise EnvironmentConflict(
                    "environment variable %s bound twice (%r, %r)"
                    % (key, self._values[key], value)
                )

            self._values[key] = value
            self._entries.append((section, key, value))

    def __getitem__(self, key):
        return self._values[key]

    def __iter__(self):
        return (key for _, key, _ in self._entries)

    def __len__(self):
        return len(self._entries)

    def __repr__(self):
        return "EnvironmentPlan(%r)" % self._values

    @property
    def entries(self):
        return list(self._entries)

    def section(self, name):
        """Obtain the variables contributed by a named section."""
        return {key: value for section, key, value in self._entries if section == name}

    def link_flags(self):
        return self._values.get(LINK_FLAGS, "").split()

    def as_dict(self):
        return dict(self._values)

    def serialize(self) -> bytes:
        lines = ["%s=%s\n" % (key, self._values[key]) for key in sorted(self._values)]
        return "".join(lines).encode("utf-8")

    def fingerprint(self) -> str:
        return hashlib.sha256(self.serialize()).hexdigest()


def base_variables(version_extra: str, storage_paths):
    return [
        (VERSION_EXTRA, version_extra),
        (STORAGE_INCLUDE_DIR, storage_paths["include_dir"]),
        (STORAGE_LIB_DIR, storage_paths["lib_dir"]),
    ]


def static_link_flags(target: PlatformDescriptor):
    # libstdc++.a in the base toolchain isn't built with -fPIE, which
    # precludes leaving PIE enabled for static targets.
    if target.is_static:
        return list(STATIC_RELOCATION_FLAGS)

    return []


def cross_link_flags(build: PlatformDescriptor, host: PlatformDescriptor):
    if build.triple != host.triple:
        return list(LINK_LIBC_FLAGS)

    return []


def needs_stdcxx_link(target: PlatformDescriptor) -> bool:
    """Whether libstdc++ must be linked explicitly for a target.

    Static non-LLVM toolchains fail to pull in libstdc++ on their own for
    aarch64 and x86_64. Keep this condition exactly as narrow as it is.
    """
    return (
        (target.is_aarch64 or target.is_x86_64)
        and target.is_static
        and not target.is_darwin
        and not target.is_llvm_toolchain
    )


def stdcxx_link_flags(lib_dir: str):
    return ["-l", "stdc++", "-L", lib_dir]


def toolchain_variables(triad: PlatformTriad, resolutions):
    variables = []

    for resolution in resolutions:
        variables.extend(resolution.variables())

    if triad.is_cross_compiling():
        variables.append((BUILD_TARGET, triad.target.triple))

    # Code generators run on the build machine need the build toolchain no
    # matter what the final target is.
    if triad.host.triple != triad.build.triple:
        build_toolchain = resolutions[0].toolchain
        variables.append((FOR_BUILD_CC, build_toolchain.cc))
        variables.append((FOR_BUILD_CXX, build_toolchain.cxx))

    return variables


class EnvironmentPlanBuilder(object):
    def __init__(self, version_extra: str, storage, provider: ToolchainProvider):
        self.version_extra = version_extra
        self.storage = storage
        self.provider = provider

    def storage_paths(self, variant: PackageVariant):
        name = variant.allocator.storage_build

        try:
            return self.storage[name]
        except KeyError:
            raise ToolchainUnavailable(
                "no %s storage engine build configured" % name
            ) from None

    def build(self, variant: PackageVariant, triad: PlatformTriad) -> EnvironmentPlan:
        target = triad.target
        resolutions = resolve_triad(triad, self.provider)

        entries = []

        for key, value in base_variables(
            self.version_extra, self.storage_paths(variant)
        ):
            entries.append((SECTION_BASE, key, value))

        flags = static_link_flags(target)
        if target.is_static:
            entries.append((SECTION_STATIC, STORAGE_STATIC, ""))

        flags.extend(cross_link_flags(triad.build, triad.host))

        if needs_stdcxx_link(target):
            target_toolchain = next(
                r.toolchain for r in resolutions if r.key.descriptor == target
            )
            if not target_toolchain.cxx_lib_dir:
                raise ToolchainUnavailable(
                    "no C++ runtime library directory configured for %s"
                    % target.triple
                )

            flags.extend(stdcxx_link_flags(target_toolchain.cxx_lib_dir))

        entries.append((SECTION_CROSS, LINK_FLAGS, " ".join(flags)))

        for key, value in toolchain_variables(triad, resolutions):
            entries.append((SECTION_TOOLCHAIN, key, value))

        return EnvironmentPlan(entries)
