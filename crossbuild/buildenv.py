# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.

import contextlib
import io
import pathlib
import shutil
import tarfile
import tempfile

from .docker import container_exec, container_get_archive
from .logging import log
from .utils import create_tar_from_paths, exec_and_log


class ContainerContext(object):
    def __init__(self, container):
        self.container = container

        self.source_path = "/build/src"

    def copy_source(self, root: pathlib.Path, paths):
        buf = io.BytesIO()
        create_tar_from_paths(buf, root, paths)

        log("copying %d source paths to container:%s" % (len(paths), self.source_path))
        self.run(["/bin/mkdir", "-p", self.source_path])
        self.container.put_archive(self.source_path, buf.getvalue())

    def run(self, program, environment=None, cwd=None):
        container_exec(
            self.container,
            program,
            user="build",
            environment=environment,
            workdir=cwd or self.source_path,
        )

    def get_file(self, path):
        log("retrieving container file %s" % path)
        data = io.BytesIO(
            container_get_archive(self.container, "%s/%s" % (self.source_path, path))
        )

        with tarfile.open(fileobj=data) as tf:
            for ti in tf:
                if ti.isfile():
                    return tf.extractfile(ti).read()

        raise FileNotFoundError("file not found: %s" % path)


class TempdirContext(object):
    def __init__(self, td):
        self.td = pathlib.Path(td)

        self.source_path = str(self.td / "src")

    def copy_source(self, root: pathlib.Path, paths):
        dest = pathlib.Path(self.source_path)
        dest.mkdir(exist_ok=True)

        log("copying %d source paths to %s" % (len(paths), dest))

        for path in sorted(paths):
            (dest / path).parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(root / path, dest / path)

    def run(self, program, environment=None, cwd=None):
        exec_and_log(program, cwd=cwd or self.source_path, env=environment)

    def get_file(self, path):
        log("retrieving file %s" % path)

        p = pathlib.Path(self.source_path) / path
        with p.open("rb") as fh:
            return fh.read()


@contextlib.contextmanager
def build_environment(client, image):
    if client is not None:
        container = client.containers.run(
            image, command=["/bin/sleep", "86400"], detach=True
        )
        td = None
        context = ContainerContext(container)
    else:
        container = None
        td = tempfile.TemporaryDirectory()
        context = TempdirContext(td.name)

    try:
        yield context
    finally:
        if container:
            container.stop(timeout=0)
            container.remove()
        else:
            td.cleanup()
