# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.

"""Expansion of allocators and targets into named build jobs."""

import dataclasses
import hashlib
from typing import Optional

from .envplan import EnvironmentPlan, EnvironmentPlanBuilder
from .logging import log
from .platforms import PlatformDescriptor, PlatformTriad, make_triad
from .toolchain import ToolchainUnavailable
from .variants import AllocatorVariant, PackageVariant

KIND_BINARY = "binary"
KIND_IMAGE = "image"


class UnknownOutput(Exception):
    """Represents a request for an output the matrix does not define."""


@dataclasses.dataclass(frozen=True)
class BuildJob:
    name: str
    variant: PackageVariant
    triad: PlatformTriad
    plan: Optional[EnvironmentPlan]
    package_fingerprint: str
    error: Optional[Exception] = None

    @property
    def features(self):
        return self.variant.allocator.features

    def fingerprint(self) -> str:
        """Content hash of every input of this job."""
        if self.plan is None:
            raise ValueError("job %s has no environment plan" % self.name)

        h = hashlib.sha256()
        h.update(self.package_fingerprint.encode("ascii") + b"\0")
        h.update(",".join(self.features).encode("ascii") + b"\0")
        h.update(self.plan.fingerprint().encode("ascii"))

        return h.hexdigest()

    @property
    def binary_output(self) -> str:
        return binary_output_name(self.variant)

    @property
    def image_output(self) -> str:
        return image_output_name(self.variant)


def binary_output_name(variant: PackageVariant) -> str:
    if variant.target is not None and variant.target.is_static:
        return "static-%s" % variant.name

    return variant.name


def image_output_name(variant: PackageVariant) -> str:
    if variant.name == AllocatorVariant.DEFAULT.label:
        return "oci-image"

    return "oci-image-%s" % variant.name


def cells(allocators, targets):
    """Enumerate matrix cells, native first, in a stable order."""
    for target in [None, *targets]:
        for allocator in allocators:
            yield PackageVariant(target=target, allocator=allocator)


def triad_for(
    variant: PackageVariant,
    build: PlatformDescriptor,
    host: Optional[PlatformDescriptor] = None,
) -> PlatformTriad:
    """Assign platform roles to a matrix cell.

    The artifact of a cell runs on its host. The native cell is hosted on
    ``host`` (the build machine by default) and a cross cell on its target,
    unless ``host`` pins the compiled tools elsewhere.
    """
    if variant.target is None:
        host = host or build
        return make_triad(build, host, host)

    return make_triad(build, host or variant.target, variant.target)


def expand(
    allocators,
    targets,
    build: PlatformDescriptor,
    plan_builder: EnvironmentPlanBuilder,
    package_fingerprint: str,
    host: Optional[PlatformDescriptor] = None,
):
    """Lazily produce one BuildJob per (target, allocator) cell.

    A cell whose toolchain cannot be resolved is yielded with ``error`` set
    and no plan; the remaining cells are unaffected.
    """
    for variant in cells(allocators, targets):
        triad = triad_for(variant, build, host)

        try:
            plan = plan_builder.build(variant, triad)
            error = None
        except ToolchainUnavailable as e:
            log("%s: toolchain unavailable: %s" % (variant.name, e))
            plan = None
            error = e

        yield BuildJob(
            name=variant.name,
            variant=variant,
            triad=triad,
            plan=plan,
            package_fingerprint=package_fingerprint,
            error=error,
        )


def output_table(jobs):
    """Map every output name to its (job, kind) pair."""
    outputs = {}

    for job in jobs:
        for name, kind in (
            (job.binary_output, KIND_BINARY),
            (job.image_output, KIND_IMAGE),
        ):
            if name in outputs:
                raise ValueError("output name collision: %s" % name)

            outputs[name] = (job, kind)

    return outputs


def select_outputs(outputs, names):
    selected = []

    for name in names:
        if name not in outputs:
            raise UnknownOutput("unknown output: %s" % name)

        selected.append((name,) + outputs[name])

    return selected
