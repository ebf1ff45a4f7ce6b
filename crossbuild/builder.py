# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.

import json
import os
import pathlib

import docker

from .buildenv import build_environment
from .cache import ArtifactCache
from .config import PackageDescription
from .envplan import BUILD_TARGET
from .logging import log
from .matrix import BuildJob
from .utils import BuildFailure


def cargo_command(job: BuildJob):
    args = ["cargo", "build", "--release", "--locked"]

    if job.features:
        args.extend(["--features", ",".join(job.features)])

    return args


def binary_path(job: BuildJob, binary: str) -> str:
    """Path of the compiled binary relative to the source tree."""
    if BUILD_TARGET in job.plan:
        return "target/%s/release/%s" % (job.plan[BUILD_TARGET], binary)

    return "target/release/%s" % binary


def build_info(job: BuildJob, package: PackageDescription):
    return {
        "name": package.name,
        "version": package.version,
        "job": job.name,
        "allocator": job.variant.allocator.label,
        "features": job.features,
        "target": job.triad.target.triple,
        "static": job.triad.target.is_static,
        "environment": job.plan.as_dict(),
    }


class PackageBuilder(object):
    """Compiles the package for a job inside a build environment.

    With a Docker client the build runs in a container created from
    ``image``. Without one it runs in a temporary directory on this machine.
    """

    def __init__(self, client, image, package: PackageDescription):
        self.client = client
        self.image = image
        self.package = package

    def environment(self, job: BuildJob):
        if self.client is None:
            env = dict(os.environ)
        else:
            env = {}

        env.update(job.plan.as_dict())

        return env

    def build(self, job: BuildJob, dest: pathlib.Path):
        """Build a job and write its artifact into ``dest``."""
        binary = self.package.binary

        try:
            with build_environment(self.client, self.image) as build_env:
                build_env.copy_source(self.package.root, self.package.source_files())

                log("building %s %s" % (self.package.name, job.name))
                build_env.run(cargo_command(job), environment=self.environment(job))

                data = build_env.get_file(binary_path(job, binary))
        except docker.errors.DockerException as e:
            raise BuildFailure("build environment error for %s: %s" % (job.name, e))
        except FileNotFoundError as e:
            raise BuildFailure("%s did not produce %s: %s" % (job.name, binary, e))

        bin_dir = dest / "bin"
        bin_dir.mkdir(parents=True)

        with (bin_dir / binary).open("wb") as fh:
            fh.write(data)
        (bin_dir / binary).chmod(0o755)

        with (dest / "BUILD.json").open("w") as fh:
            json.dump(build_info(job, self.package), fh, sort_keys=True, indent=4)

    def realize(self, job: BuildJob, cache: ArtifactCache) -> pathlib.Path:
        return cache.realize(
            job.fingerprint(), job.name, lambda dest: self.build(job, dest)
        )
