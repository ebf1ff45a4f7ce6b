# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.

import concurrent.futures
import dataclasses
import pathlib
import sys
from typing import Optional

from .builder import PackageBuilder
from .cache import ArtifactCache
from .envplan import VERSION_EXTRA
from .image import (
    ImagePackager,
    PackagingFailure,
    load_image,
    oci_architecture,
    write_image_archive,
)
from .logging import log, set_logger
from .matrix import KIND_IMAGE, BuildJob
from .toolchain import ToolchainUnavailable
from .utils import BuildFailure, compress_artifact_archive

STATUS_OK = "ok"
STATUS_TOOLCHAIN = "toolchain-unavailable"
STATUS_BUILD = "build-failed"
STATUS_PACKAGING = "packaging-failed"
STATUS_ERROR = "error"

FAILURE_STATUSES = (
    (ToolchainUnavailable, STATUS_TOOLCHAIN),
    (BuildFailure, STATUS_BUILD),
    (PackagingFailure, STATUS_PACKAGING),
)


@dataclasses.dataclass
class CellResult:
    output: str
    job: BuildJob
    kind: str
    status: str
    path: Optional[pathlib.Path] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.status == STATUS_OK


class MatrixRunner(object):
    """Realizes selected outputs in parallel.

    A failure only affects the output it occurred in. Image outputs wait on
    their own job's binary and nothing else.
    """

    def __init__(
        self,
        builder: PackageBuilder,
        cache: ArtifactCache,
        packager: ImagePackager,
        build_dir: pathlib.Path,
        client=None,
        dist_dir: Optional[pathlib.Path] = None,
    ):
        self.builder = builder
        self.cache = cache
        self.packager = packager
        self.build_dir = build_dir
        self.client = client
        self.dist_dir = dist_dir

    def realize_binary(self, job: BuildJob) -> pathlib.Path:
        if job.error is not None:
            raise job.error

        return self.builder.realize(job, self.cache)

    def write_dist(self, job: BuildJob, path: pathlib.Path):
        basename = "%s-%s-%s" % (
            self.builder.package.name,
            job.binary_output,
            job.plan[VERSION_EXTRA],
        )

        return compress_artifact_archive(path, self.dist_dir, basename)

    def realize_image(self, job: BuildJob, output: str) -> pathlib.Path:
        artifact = self.realize_binary(job)

        spec = self.packager.package(
            artifact,
            job.name,
            architecture=oci_architecture(job.triad.target.arch),
        )
        dest = self.build_dir / "images" / ("%s.tar" % output)
        write_image_archive(spec, self.packager.layer_files(artifact), dest)

        if self.client is not None:
            load_image(self.client, dest)

        return dest

    def realize(self, output: str, job: BuildJob, kind: str) -> CellResult:
        log_dir = self.build_dir / "logs"
        log_dir.mkdir(parents=True, exist_ok=True)

        with (log_dir / ("build.%s.log" % output)).open("wb") as log_fh:
            set_logger(output, log_fh)
            try:
                if kind == KIND_IMAGE:
                    path = self.realize_image(job, output)
                else:
                    path = self.realize_binary(job)
                    if self.dist_dir:
                        self.write_dist(job, path)
            except tuple(cls for cls, _ in FAILURE_STATUSES) as e:
                status = next(s for cls, s in FAILURE_STATUSES if isinstance(e, cls))
                log("%s: %s" % (status, e))
                return CellResult(output, job, kind, status, error=e)
            except Exception as e:
                log("unexpected error: %r" % e)
                return CellResult(output, job, kind, STATUS_ERROR, error=e)
            finally:
                set_logger(None, None)

        return CellResult(output, job, kind, STATUS_OK, path=path)

    def run(self, selected, parallelism=4):
        """Realize (output, job, kind) triples, returning results in order."""
        with concurrent.futures.ThreadPoolExecutor(max(parallelism, 1)) as e:
            fs = [e.submit(self.realize, *entry) for entry in selected]

            return [f.result() for f in fs]


def print_status_table(results, fh=sys.stdout):
    width = max([len("OUTPUT")] + [len(r.output) for r in results])

    print("%-*s  %-22s  %s" % (width, "OUTPUT", "STATUS", "RESULT"), file=fh)

    for r in results:
        if r.ok:
            detail = str(r.path)
        else:
            detail = str(r.error).splitlines()[0] if str(r.error) else ""

        print("%-*s  %-22s  %s" % (width, r.output, r.status, detail), file=fh)


def print_diagnostics(results, fh=sys.stderr):
    """Surface compiler and linker output of failed builds verbatim."""
    for r in results:
        if isinstance(r.error, BuildFailure) and r.error.diagnostics:
            print("==> %s" % r.output, file=fh)
            fh.write(r.error.diagnostics.decode("utf-8", "replace"))
            print(file=fh)
