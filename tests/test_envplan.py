# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.

import itertools
import unittest

from crossbuild.envplan import (
    BUILD_TARGET,
    FOR_BUILD_CC,
    FOR_BUILD_CXX,
    LINK_FLAGS,
    SECTION_BASE,
    SECTION_CROSS,
    SECTION_STATIC,
    SECTION_TOOLCHAIN,
    STORAGE_INCLUDE_DIR,
    STORAGE_LIB_DIR,
    STORAGE_STATIC,
    VERSION_EXTRA,
    EnvironmentConflict,
    EnvironmentPlan,
    EnvironmentPlanBuilder,
    needs_stdcxx_link,
)
from crossbuild.matrix import triad_for
from crossbuild.platforms import PlatformDescriptor, make_triad, parse_platform
from crossbuild.toolchain import ToolchainProvider, ToolchainUnavailable
from crossbuild.variants import AllocatorVariant, PackageVariant

NATIVE = "x86_64-unknown-linux-gnu"
AARCH64_MUSL = "aarch64-unknown-linux-musl"
CXX_LIB_DIR = "/usr/lib/gcc-cross/aarch64-linux-gnu/12"

TOOLCHAINS = {
    AARCH64_MUSL: {
        "cc": "aarch64-linux-gnu-gcc",
        "cxx": "aarch64-linux-gnu-g++",
        "linker": "aarch64-linux-gnu-gcc",
        "cxx_lib_dir": CXX_LIB_DIR,
    },
    # No cxx_lib_dir on purpose.
    "x86_64-unknown-linux-musl": {"cc": "musl-gcc", "cxx": "g++"},
    "riscv64gc-unknown-linux-gnu": {"cc": "riscv64-linux-gnu-gcc"},
}

STORAGE = {
    "default": {"include_dir": "/opt/rocksdb/include", "lib_dir": "/opt/rocksdb/lib"},
    "jemalloc": {
        "include_dir": "/opt/rocksdb-jemalloc/include",
        "lib_dir": "/opt/rocksdb-jemalloc/lib",
    },
}


def plan_builder(storage=STORAGE):
    return EnvironmentPlanBuilder(
        "abc1234", storage, ToolchainProvider(TOOLCHAINS, NATIVE)
    )


class TestEnvironmentPlan(unittest.TestCase):
    def test_duplicate_key(self):
        with self.assertRaises(EnvironmentConflict):
            EnvironmentPlan(
                [
                    (SECTION_BASE, "FOO", "1"),
                    (SECTION_TOOLCHAIN, "FOO", "2"),
                ]
            )

    def test_conflict_is_assertion(self):
        self.assertTrue(issubclass(EnvironmentConflict, AssertionError))

    def test_unknown_section(self):
        with self.assertRaises(ValueError):
            EnvironmentPlan([("bogus", "FOO", "1")])

    def test_mapping(self):
        plan = EnvironmentPlan(
            [
                (SECTION_BASE, "B", "2"),
                (SECTION_BASE, "A", "1"),
                (SECTION_CROSS, LINK_FLAGS, "-l c"),
            ]
        )

        self.assertEqual(list(plan), ["B", "A", LINK_FLAGS])
        self.assertEqual(plan["A"], "1")
        self.assertEqual(len(plan), 3)
        self.assertEqual(plan.section(SECTION_BASE), {"B": "2", "A": "1"})
        self.assertEqual(plan.link_flags(), ["-l", "c"])
        self.assertEqual(plan.serialize(), b"A=1\nB=2\nCARGO_BUILD_RUSTFLAGS=-l c\n")


class TestStdcxxRule(unittest.TestCase):
    def test_all_combinations(self):
        for arch_ok, static, darwin, llvm in itertools.product(
            [True, False], repeat=4
        ):
            with self.subTest(arch_ok=arch_ok, static=static, darwin=darwin, llvm=llvm):
                descriptor = PlatformDescriptor(
                    arch="aarch64" if arch_ok else "riscv64gc",
                    vendor="apple" if darwin else "unknown",
                    os="darwin" if darwin else "linux",
                    abi=None if darwin else "musl",
                    is_static=static,
                    is_llvm_toolchain=llvm,
                )

                self.assertEqual(
                    needs_stdcxx_link(descriptor),
                    arch_ok and static and not darwin and not llvm,
                )

    def test_x86_64(self):
        self.assertTrue(needs_stdcxx_link(parse_platform("x86_64-unknown-linux-musl")))
        self.assertFalse(needs_stdcxx_link(parse_platform("x86_64-unknown-linux-gnu")))


class TestPlanBuilder(unittest.TestCase):
    def setUp(self):
        self.gnu = parse_platform(NATIVE)
        self.musl = parse_platform(AARCH64_MUSL)

    def test_native(self):
        variant = PackageVariant(None, AllocatorVariant.DEFAULT)
        plan = plan_builder().build(variant, make_triad(self.gnu))

        self.assertEqual(
            plan.as_dict(),
            {
                VERSION_EXTRA: "abc1234",
                STORAGE_INCLUDE_DIR: "/opt/rocksdb/include",
                STORAGE_LIB_DIR: "/opt/rocksdb/lib",
                LINK_FLAGS: "",
                "CC_X86_64_UNKNOWN_LINUX_GNU": "cc",
                "CXX_X86_64_UNKNOWN_LINUX_GNU": "c++",
                "CARGO_TARGET_X86_64_UNKNOWN_LINUX_GNU_LINKER": "cc",
            },
        )
        self.assertEqual(plan.section(SECTION_STATIC), {})
        self.assertNotIn(BUILD_TARGET, plan)
        self.assertNotIn(FOR_BUILD_CC, plan)

    def test_aarch64_musl(self):
        variant = PackageVariant(self.musl, AllocatorVariant.DEFAULT)
        plan = plan_builder().build(variant, triad_for(variant, self.gnu))

        self.assertEqual(plan[STORAGE_STATIC], "")
        self.assertEqual(plan[BUILD_TARGET], AARCH64_MUSL)
        self.assertEqual(
            plan.link_flags(),
            [
                "-C",
                "relocation-model=static",
                "-l",
                "c",
                "-l",
                "stdc++",
                "-L",
                CXX_LIB_DIR,
            ],
        )
        self.assertEqual(plan["CC_AARCH64_UNKNOWN_LINUX_MUSL"], "aarch64-linux-gnu-gcc")
        self.assertEqual(
            plan["CARGO_TARGET_AARCH64_UNKNOWN_LINUX_MUSL_LINKER"],
            "aarch64-linux-gnu-gcc",
        )
        self.assertEqual(plan["CC_X86_64_UNKNOWN_LINUX_GNU"], "cc")
        self.assertEqual(plan[FOR_BUILD_CC], "cc")
        self.assertEqual(plan[FOR_BUILD_CXX], "c++")

    def test_same_arch_static_cross(self):
        target = parse_platform("x86_64-unknown-linux-musl", llvm=True)
        variant = PackageVariant(target, AllocatorVariant.DEFAULT)
        plan = plan_builder().build(variant, triad_for(variant, self.gnu))

        self.assertEqual(
            plan.link_flags(), ["-C", "relocation-model=static", "-l", "c"]
        )
        self.assertEqual(plan[FOR_BUILD_CC], "cc")
        self.assertEqual(plan[BUILD_TARGET], "x86_64-unknown-linux-musl")

    def test_non_static_target(self):
        target = parse_platform("riscv64gc-unknown-linux-gnu")
        variant = PackageVariant(target, AllocatorVariant.DEFAULT)
        plan = plan_builder().build(variant, make_triad(self.gnu, target=target))

        self.assertNotIn(STORAGE_STATIC, plan)
        self.assertEqual(plan.link_flags(), [])
        self.assertEqual(plan[BUILD_TARGET], "riscv64gc-unknown-linux-gnu")

    def test_host_matches_build(self):
        variant = PackageVariant(self.musl, AllocatorVariant.DEFAULT)
        plan = plan_builder().build(variant, make_triad(self.gnu, self.gnu, self.musl))

        self.assertEqual(
            plan.link_flags(),
            ["-C", "relocation-model=static", "-l", "stdc++", "-L", CXX_LIB_DIR],
        )
        self.assertNotIn(FOR_BUILD_CC, plan)
        self.assertNotIn(FOR_BUILD_CXX, plan)
        self.assertEqual(plan[BUILD_TARGET], AARCH64_MUSL)

    def test_missing_cxx_lib_dir(self):
        target = parse_platform("x86_64-unknown-linux-musl")
        variant = PackageVariant(target, AllocatorVariant.DEFAULT)

        with self.assertRaises(ToolchainUnavailable):
            plan_builder().build(variant, make_triad(self.gnu, target=target))

    def test_llvm_target_skips_stdcxx(self):
        target = parse_platform("x86_64-unknown-linux-musl", llvm=True)
        variant = PackageVariant(target, AllocatorVariant.DEFAULT)
        plan = plan_builder().build(variant, make_triad(self.gnu, target=target))

        self.assertEqual(plan.link_flags(), ["-C", "relocation-model=static"])

    def test_jemalloc_storage(self):
        variant = PackageVariant(None, AllocatorVariant.JEMALLOC)
        plan = plan_builder().build(variant, make_triad(self.gnu))

        self.assertEqual(plan[STORAGE_LIB_DIR], "/opt/rocksdb-jemalloc/lib")

    def test_hmalloc_uses_default_storage(self):
        variant = PackageVariant(None, AllocatorVariant.HARDENED_MALLOC)
        plan = plan_builder().build(variant, make_triad(self.gnu))

        self.assertEqual(plan[STORAGE_LIB_DIR], "/opt/rocksdb/lib")

    def test_missing_storage_build(self):
        variant = PackageVariant(None, AllocatorVariant.JEMALLOC)
        storage = {"default": STORAGE["default"]}

        with self.assertRaises(ToolchainUnavailable):
            plan_builder(storage).build(variant, make_triad(self.gnu))

    def test_deterministic(self):
        variant = PackageVariant(self.musl, AllocatorVariant.JEMALLOC)
        triad = make_triad(self.gnu, self.gnu, self.musl)

        a = plan_builder().build(variant, triad)
        b = plan_builder().build(variant, triad)

        self.assertEqual(a.serialize(), b.serialize())
        self.assertEqual(a.fingerprint(), b.fingerprint())
        self.assertEqual(a.entries, b.entries)

    def test_sections_disjoint(self):
        variant = PackageVariant(self.musl, AllocatorVariant.DEFAULT)
        plan = plan_builder().build(variant, make_triad(self.gnu, self.musl, self.musl))

        seen = set()
        for section in (SECTION_BASE, SECTION_STATIC, SECTION_CROSS, SECTION_TOOLCHAIN):
            keys = set(plan.section(section))
            self.assertFalse(keys & seen)
            seen |= keys

        self.assertEqual(seen, set(plan))


if __name__ == "__main__":
    unittest.main()
