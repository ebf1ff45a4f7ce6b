# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.

import dataclasses
import datetime
import hashlib
import io
import os
import pathlib
import stat
import subprocess
import sys
import tarfile

import zstandard

from .logging import log


class BuildFailure(Exception):
    """Represents a failed compiler or linker invocation.

    ``diagnostics`` holds the tool output verbatim.
    """

    def __init__(self, message, diagnostics=b""):
        super().__init__(message)
        self.diagnostics = diagnostics


@dataclasses.dataclass(frozen=True)
class RepoMetadata:
    short_rev: str
    dirty: bool
    # YYYYMMDDHHMMSS of the last commit.
    last_modified: str

    @property
    def version_extra(self) -> str:
        if self.dirty:
            return "%s-dirty" % self.short_rev

        return self.short_rev

    @property
    def last_modified_date(self) -> str:
        return self.last_modified[0:8]


def _git(root: pathlib.Path, args):
    return (
        subprocess.check_output(["git", *args], cwd=root, stderr=subprocess.DEVNULL)
        .strip()
        .decode("ascii")
    )


def repo_metadata_from_git(root: pathlib.Path) -> RepoMetadata:
    try:
        short_rev = _git(root, ["rev-parse", "--short", "HEAD"])
        dirty = bool(_git(root, ["status", "--porcelain", "--untracked-files=no"]))
        last_modified = _git(
            root,
            [
                "log",
                "-n",
                "1",
                "--date=format:%Y%m%d%H%M%S",
                "--pretty=format:%cd",
            ],
        )
    except (OSError, subprocess.CalledProcessError):
        print("warning: unable to read git metadata from %s" % root, file=sys.stderr)
        short_rev = "unknown"
        dirty = False
        last_modified = "19700101000000"

    return RepoMetadata(short_rev=short_rev, dirty=dirty, last_modified=last_modified)


def repo_metadata(root: pathlib.Path, environ=None) -> RepoMetadata:
    """Obtain repository metadata, honoring environment overrides."""
    environ = os.environ if environ is None else environ

    metadata = repo_metadata_from_git(root)

    if "CROSSBUILD_VERSION_EXTRA" in environ:
        metadata = dataclasses.replace(
            metadata, short_rev=environ["CROSSBUILD_VERSION_EXTRA"], dirty=False
        )

    if "SOURCE_DATE_EPOCH" in environ:
        when = datetime.datetime.fromtimestamp(
            int(environ["SOURCE_DATE_EPOCH"]), tz=datetime.timezone.utc
        )
        metadata = dataclasses.replace(
            metadata, last_modified=when.strftime("%Y%m%d%H%M%S")
        )

    return metadata


def hash_path(p: pathlib.Path):
    h = hashlib.sha256()

    with p.open("rb") as fh:
        while True:
            chunk = fh.read(65536)
            if not chunk:
                break

            h.update(chunk)

    return h.hexdigest()


def write_if_different(p: pathlib.Path, data: bytes):
    """Write a file if it is missing or its content is different."""
    if p.exists():
        with p.open("rb") as fh:
            existing = fh.read()
        write = existing != data
    else:
        write = True

    if write:
        with p.open("wb") as fh:
            fh.write(data)


def create_tar_from_directory(fh, base_path: pathlib.Path, path_prefix=None):
    with tarfile.open(name="", mode="w", fileobj=fh) as tf:
        for root, dirs, files in os.walk(base_path):
            dirs.sort()

            for f in sorted(files):
                full = base_path / root / f
                rel = full.relative_to(base_path)
                if path_prefix:
                    rel = pathlib.Path(path_prefix) / rel
                tf.add(full, rel)


def create_tar_from_paths(fh, base_path: pathlib.Path, paths):
    """Write a tar archive holding only the named files and directories."""
    with tarfile.open(name="", mode="w", fileobj=fh) as tf:
        for path in sorted(paths):
            full = base_path / path

            if full.is_dir():
                for root, dirs, files in os.walk(full):
                    dirs.sort()

                    for f in sorted(files):
                        p = pathlib.Path(root) / f
                        tf.add(str(p), str(p.relative_to(base_path)))
            else:
                tf.add(str(full), str(path))


# 2024-01-01T00:00:00Z
DEFAULT_MTIME = 1704067200


def normalize_tar_archive(data: io.BytesIO, mtime=DEFAULT_MTIME) -> io.BytesIO:
    """Normalize the contents of a tar archive.

    We want tar archives to be as deterministic as possible. This function will
    take tar archive data in a buffer and return a new buffer containing a more
    deterministic tar archive.
    """
    members = []

    with tarfile.open(fileobj=data) as tf:
        for ti in tf:
            # We don't care about directory entries. Tools can handle this fine.
            if ti.isdir():
                continue

            filedata = tf.extractfile(ti)
            if filedata is not None:
                filedata = io.BytesIO(filedata.read())

            members.append((ti, filedata))

    members.sort(key=lambda v: v[0].name)

    for ti, _ in members:
        ti.pax_headers = {}

        ti.mtime = mtime
        ti.uid = 0
        ti.uname = "root"
        ti.gid = 0
        ti.gname = "root"

        # Give user/group read/write on all entries.
        ti.mode |= stat.S_IRUSR | stat.S_IWUSR | stat.S_IRGRP | stat.S_IWGRP

        # If user executable, give to group as well.
        if ti.mode & stat.S_IXUSR:
            ti.mode |= stat.S_IXGRP

    dest = io.BytesIO()
    with tarfile.open(fileobj=dest, mode="w") as tf:
        for ti, filedata in members:
            tf.addfile(ti, filedata)

    dest.seek(0)

    return dest


def compress_artifact_archive(
    source_path: pathlib.Path, dist_path: pathlib.Path, basename: str
):
    """Write a normalized, zstd compressed archive of an artifact directory."""
    dist_path.mkdir(parents=True, exist_ok=True)

    dest_path = dist_path / ("%s.tar.zst" % basename)
    temp_path = dist_path / ("%s.tar.zst.tmp" % basename)

    log("compressing %s to %s" % (source_path, dest_path))

    data = io.BytesIO()
    create_tar_from_directory(data, source_path, path_prefix=basename)
    data.seek(0)
    data = normalize_tar_archive(data)

    try:
        with temp_path.open("wb") as ofh:
            params = zstandard.ZstdCompressionParameters.from_level(
                19, strategy=zstandard.STRATEGY_BTULTRA2
            )
            cctx = zstandard.ZstdCompressor(compression_params=params)
            cctx.copy_stream(data, ofh)

        temp_path.rename(dest_path)
    finally:
        temp_path.unlink(missing_ok=True)

    log("%s has SHA256 %s" % (dest_path, hash_path(dest_path)))

    return dest_path


def exec_and_log(args, cwd, env):
    p = subprocess.Popen(
        args,
        cwd=cwd,
        env=env,
        bufsize=1,
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
    )

    output = []
    for line in iter(p.stdout.readline, b""):
        output.append(line)
        log(line.rstrip())

    p.wait()

    if p.returncode:
        if "CROSSBUILD_BREAK_ON_FAILURE" in os.environ:
            import pdb

            pdb.set_trace()

        raise BuildFailure(
            "process exited %d: %s" % (p.returncode, " ".join(args)),
            diagnostics=b"".join(output),
        )
