# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.

import pathlib
import unittest

from crossbuild.builder import PackageBuilder, binary_path, build_info, cargo_command
from crossbuild.config import PackageDescription
from crossbuild.envplan import EnvironmentPlanBuilder
from crossbuild.matrix import expand
from crossbuild.platforms import ConfigParseError, parse_platform
from crossbuild.toolchain import ToolchainProvider
from crossbuild.variants import AllocatorVariant, PackageVariant, parse_allocator

NATIVE = "x86_64-unknown-linux-gnu"

TOOLCHAINS = {
    "aarch64-unknown-linux-musl": {
        "cc": "aarch64-linux-gnu-gcc",
        "cxx": "aarch64-linux-gnu-g++",
        "cxx_lib_dir": "/usr/lib/gcc-cross/aarch64-linux-gnu/12",
    },
}

STORAGE = {
    "default": {"include_dir": "/opt/rocksdb/include", "lib_dir": "/opt/rocksdb/lib"},
}

PACKAGE = PackageDescription(
    name="chat",
    version="0.4.1",
    binary="chat",
    root=pathlib.Path("/nonexistent"),
    include=("src",),
)


def jobs():
    builder = EnvironmentPlanBuilder(
        "abc1234", STORAGE, ToolchainProvider(TOOLCHAINS, NATIVE)
    )

    return {
        j.name: j
        for j in expand(
            [AllocatorVariant.DEFAULT, AllocatorVariant.HARDENED_MALLOC],
            [parse_platform("aarch64-unknown-linux-musl")],
            parse_platform(NATIVE),
            builder,
            "0" * 64,
        )
    }


class TestVariants(unittest.TestCase):
    def test_parse_allocator(self):
        self.assertIs(parse_allocator(None), AllocatorVariant.DEFAULT)
        self.assertIs(parse_allocator("hmalloc"), AllocatorVariant.HARDENED_MALLOC)

        with self.assertRaises(ConfigParseError):
            parse_allocator("tcmalloc")

    def test_names(self):
        target = parse_platform("aarch64-unknown-linux-musl")

        self.assertEqual(
            PackageVariant(None, AllocatorVariant.JEMALLOC).name, "jemalloc"
        )
        self.assertEqual(
            PackageVariant(target, AllocatorVariant.DEFAULT).name,
            "aarch64-unknown-linux-musl",
        )
        self.assertEqual(
            PackageVariant(target, AllocatorVariant.HARDENED_MALLOC).name,
            "aarch64-unknown-linux-musl-hmalloc",
        )


class TestBuilder(unittest.TestCase):
    def setUp(self):
        self.jobs = jobs()

    def test_cargo_command(self):
        self.assertEqual(
            cargo_command(self.jobs["default"]),
            ["cargo", "build", "--release", "--locked"],
        )
        self.assertEqual(
            cargo_command(self.jobs["hmalloc"]),
            ["cargo", "build", "--release", "--locked", "--features", "hardened_malloc"],
        )

    def test_binary_path(self):
        self.assertEqual(
            binary_path(self.jobs["default"], "chat"), "target/release/chat"
        )
        self.assertEqual(
            binary_path(self.jobs["aarch64-unknown-linux-musl"], "chat"),
            "target/aarch64-unknown-linux-musl/release/chat",
        )

    def test_container_environment(self):
        job = self.jobs["aarch64-unknown-linux-musl"]
        env = PackageBuilder(object(), "image", PACKAGE).environment(job)

        self.assertEqual(env, job.plan.as_dict())

    def test_local_environment(self):
        job = self.jobs["default"]
        env = PackageBuilder(None, None, PACKAGE).environment(job)

        self.assertEqual(env["VERSION_EXTRA"], "abc1234")
        self.assertLessEqual(set(job.plan), set(env))

    def test_build_info(self):
        info = build_info(self.jobs["aarch64-unknown-linux-musl"], PACKAGE)

        self.assertEqual(info["target"], "aarch64-unknown-linux-musl")
        self.assertTrue(info["static"])
        self.assertEqual(info["features"], [])
        self.assertEqual(info["environment"]["STORAGE_STATIC"], "")


if __name__ == "__main__":
    unittest.main()
