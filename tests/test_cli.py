# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.

import contextlib
import io
import os
import pathlib
import tempfile
import unittest
from unittest import mock

from crossbuild.cli import main

CONFIG = """
package:
  manifest: Cargo.toml
  include: [src, Cargo.toml]
build_platform: x86_64-unknown-linux-gnu
targets:
  - aarch64-unknown-linux-musl
allocators: [default, jemalloc]
toolchains:
  aarch64-unknown-linux-musl:
    cc: aarch64-linux-gnu-gcc
    cxx: aarch64-linux-gnu-g++
    cxx_lib_dir: /usr/lib/gcc-cross/aarch64-linux-gnu/12
storage:
  default: {include_dir: /opt/rocksdb/include, lib_dir: /opt/rocksdb/lib}
  jemalloc: {include_dir: /opt/rocksdb-jemalloc/include, lib_dir: /opt/rocksdb-jemalloc/lib}
"""

MANIFEST = """
[package]
name = "chat"
version = "0.4.1"
"""


class TestCli(unittest.TestCase):
    def setUp(self):
        td = tempfile.TemporaryDirectory()
        self.addCleanup(td.cleanup)
        self.root = pathlib.Path(td.name).resolve()

        (self.root / "Cargo.toml").write_text(MANIFEST)
        (self.root / "src").mkdir()
        (self.root / "src" / "main.rs").write_text("fn main() {}\n")
        self.config = self.root / "crossbuild.yml"
        self.config.write_text(CONFIG)

        environ = {"CROSSBUILD_VERSION_EXTRA": "test"}
        patcher = mock.patch.dict(os.environ, environ)
        patcher.start()
        self.addCleanup(patcher.stop)
        os.environ.pop("CROSSBUILD_NO_DOCKER", None)

    def run_main(self, *args):
        out = io.StringIO()
        err = io.StringIO()
        with contextlib.redirect_stdout(out), contextlib.redirect_stderr(err):
            code = main(["--config", str(self.config), *args])

        return code, out.getvalue(), err.getvalue()

    def test_list(self):
        code, out, _ = self.run_main("list")

        self.assertEqual(code, 0)
        self.assertEqual(
            out.splitlines(),
            [
                "default",
                "oci-image",
                "jemalloc",
                "oci-image-jemalloc",
                "static-aarch64-unknown-linux-musl",
                "oci-image-aarch64-unknown-linux-musl",
                "static-aarch64-unknown-linux-musl-jemalloc",
                "oci-image-aarch64-unknown-linux-musl-jemalloc",
            ],
        )

    def test_env(self):
        code, out, _ = self.run_main("env", "static-aarch64-unknown-linux-musl")

        self.assertEqual(code, 0)
        lines = out.splitlines()
        self.assertIn("VERSION_EXTRA=test", lines)
        self.assertIn("STORAGE_STATIC=", lines)
        self.assertIn("CARGO_BUILD_TARGET=aarch64-unknown-linux-musl", lines)
        self.assertIn("HOST_CC=cc", lines)
        self.assertIn(
            "CARGO_BUILD_RUSTFLAGS=-C relocation-model=static -l c -l stdc++ "
            "-L /usr/lib/gcc-cross/aarch64-linux-gnu/12",
            lines,
        )

    def test_env_is_stable(self):
        first = self.run_main("env", "jemalloc")
        second = self.run_main("env", "jemalloc")

        self.assertEqual(first, second)

    def test_unknown_output(self):
        for command in ("env", "build"):
            with self.subTest(command=command):
                code, _, err = self.run_main(command, "static-windows")

                self.assertEqual(code, 1)
                self.assertIn("unknown output: static-windows", err)

    def test_config_error(self):
        self.config.write_text(CONFIG.replace("[default, jemalloc]", "[bogus]"))

        code, _, err = self.run_main("list")

        self.assertEqual(code, 1)
        self.assertIn("configuration error", err)

    def test_dockerfiles(self):
        code, out, _ = self.run_main("dockerfiles")

        self.assertEqual(code, 0)
        dockerfile = self.root / "build" / "build.Dockerfile"
        self.assertEqual(out.splitlines(), [str(dockerfile)])

        text = dockerfile.read_text()
        self.assertIn("rustup target add aarch64-unknown-linux-musl", text)
        self.assertIn("gcc-aarch64-linux-gnu", text)


if __name__ == "__main__":
    unittest.main()
