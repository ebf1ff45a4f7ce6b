# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.

import io
import operator
import os
import pathlib
import tarfile

import docker
import jinja2

from .logging import log, log_raw
from .utils import BuildFailure, write_if_different


def write_dockerfiles(source_dir: pathlib.Path, dest_dir: pathlib.Path, context):
    """Render the Dockerfile templates in a directory."""
    env = jinja2.Environment(
        loader=jinja2.FileSystemLoader(str(source_dir)),
        undefined=jinja2.StrictUndefined,
    )

    dest_dir.mkdir(parents=True, exist_ok=True)
    written = []

    for f in sorted(os.listdir(source_dir)):
        if not f.endswith(".Dockerfile"):
            continue

        tmpl = env.get_template(f)
        data = tmpl.render(**context)

        write_if_different(dest_dir / f, data.encode("utf-8"))
        written.append(dest_dir / f)

    return written


def build_docker_image(client, image_data: bytes, image_dir: pathlib.Path, name):
    image_path = image_dir / ("image-%s" % name)

    return ensure_docker_image(client, io.BytesIO(image_data), image_path=image_path)


def ensure_docker_image(client, fh, image_path=None):
    res = client.api.build(fileobj=fh, decode=True)

    image = None

    for s in res:
        if "stream" in s:
            for l in s["stream"].strip().splitlines():
                log(l)

        if "error" in s:
            raise BuildFailure(
                "docker build failed: %s" % s["error"].strip(),
                diagnostics=s["error"].encode("utf-8"),
            )

        if "aux" in s and "ID" in s["aux"]:
            image = s["aux"]["ID"]

    if not image:
        raise Exception("unable to determine built Docker image")

    if image_path:
        with image_path.open("w") as fh:
            fh.write(image + "\n")

    return image


def get_image(client, image_dir: pathlib.Path, name):
    """Resolve the ID of a previously built image, building it if missing."""
    if client is None:
        return None

    image_path = image_dir / ("image-%s" % name)

    if image_path.exists():
        with image_path.open("r") as fh:
            image_id = fh.read().strip()

        try:
            client.images.get(image_id)
            return image_id
        except docker.errors.ImageNotFound:
            pass

    dockerfile = image_dir / ("%s.Dockerfile" % name)
    with dockerfile.open("rb") as fh:
        image_data = fh.read()

    return build_docker_image(client, image_data, image_dir, name)


def container_exec(container, command, user="build", environment=None, workdir=None):
    # docker-py's exec_run() won't return the exit code. So we reinvent the
    # wheel.
    create_res = container.client.api.exec_create(
        container.id, command, user=user, environment=environment, workdir=workdir
    )

    exec_output = container.client.api.exec_start(create_res["Id"], stream=True)

    output = []
    for chunk in exec_output:
        output.append(chunk)
        for l in chunk.strip().splitlines():
            log(l)

        log_raw(chunk)

    inspect_res = container.client.api.exec_inspect(create_res["Id"])

    if inspect_res["ExitCode"] != 0:
        if "CROSSBUILD_BREAK_ON_FAILURE" in os.environ:
            print("to enter container: docker exec -it %s /bin/bash" % container.id)
            import pdb

            pdb.set_trace()

        raise BuildFailure(
            "exit code %d from %s" % (inspect_res["ExitCode"], command),
            diagnostics=b"".join(output),
        )


# 2019-01-01T00:00:00
DEFAULT_MTIME = 1546329600


def container_get_archive(container, path):
    """Get a deterministic tar archive from a container."""
    data, stat = container.get_archive(path)
    old_data = io.BytesIO()
    for chunk in data:
        old_data.write(chunk)

    old_data.seek(0)

    new_data = io.BytesIO()

    with tarfile.open(fileobj=old_data) as itf, tarfile.open(
        fileobj=new_data, mode="w"
    ) as otf:
        for member in sorted(itf.getmembers(), key=operator.attrgetter("name")):
            file_data = itf.extractfile(member) if not member.linkname else None
            member.mtime = DEFAULT_MTIME
            otf.addfile(member, file_data)

    return new_data.getvalue()


def load_image_archive(client, archive_path: pathlib.Path):
    """Load a docker-archive tarball into the Docker daemon."""
    with archive_path.open("rb") as fh:
        images = client.images.load(fh.read())

    for image in images:
        log("loaded image %s" % ", ".join(image.tags or [image.id]))

    return images
