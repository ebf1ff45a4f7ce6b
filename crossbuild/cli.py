# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.

import argparse
import os
import pathlib
import sys

import docker

from .builder import PackageBuilder
from .cache import ArtifactCache
from .config import load_config
from .docker import get_image, write_dockerfiles
from .envplan import EnvironmentPlanBuilder
from .image import ImagePackager
from .matrix import KIND_BINARY, UnknownOutput, expand, output_table, select_outputs
from .platforms import ConfigParseError
from .runner import MatrixRunner, print_diagnostics, print_status_table
from .toolchain import ToolchainProvider
from .utils import repo_metadata

TEMPLATES = pathlib.Path(os.path.abspath(__file__)).parent / "templates"
DEFAULT_CONFIG = "crossbuild.yml"


def parse_args(argv):
    parser = argparse.ArgumentParser(
        description="Build every allocator and target variant of a package"
    )
    parser.add_argument(
        "--config",
        default=DEFAULT_CONFIG,
        help="Path to the build configuration file",
    )
    parser.add_argument(
        "--build-platform",
        help="Target triple of the machine running the build",
    )
    parser.add_argument(
        "--host",
        help="Target triple of the machine the compiled tools run on",
    )
    parser.add_argument(
        "--no-docker",
        action="store_true",
        default="CROSSBUILD_NO_DOCKER" in os.environ,
        help="Build in a temporary directory instead of a container",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("list", help="List every output name")

    env_parser = subparsers.add_parser(
        "env", help="Print the environment an output is built with"
    )
    env_parser.add_argument("output")

    build_parser = subparsers.add_parser("build", help="Build outputs")
    build_parser.add_argument(
        "outputs",
        nargs="*",
        help="Outputs to build (default: every binary output)",
    )
    build_parser.add_argument(
        "-j",
        "--jobs",
        type=int,
        default=4,
        help="Number of outputs to build concurrently",
    )
    build_parser.add_argument(
        "--dist",
        action="store_true",
        help="Write compressed archives of built binaries to dist/",
    )

    subparsers.add_parser("dockerfiles", help="Render build container Dockerfiles")

    return parser.parse_args(argv)


def docker_client():
    try:
        client = docker.from_env()
        client.ping()
    except Exception as e:
        print("unable to connect to Docker: %s" % e, file=sys.stderr)
        return None

    return client


def dockerfile_context(config):
    return {
        "rust_version": config.docker["rust_version"],
        "targets": sorted(set([config.build_triple] + config.target_triples)),
    }


def main(argv=None):
    args = parse_args(argv)

    config_path = pathlib.Path(args.config).resolve()

    try:
        config = load_config(config_path, native=args.build_platform)
        host = config.descriptor(args.host) if args.host else None
        package = config.package_description()
        package_fingerprint = package.fingerprint()
    except ConfigParseError as e:
        print("configuration error: %s" % e, file=sys.stderr)
        return 1

    build_dir = config.root / "build"
    build_dir.mkdir(exist_ok=True)

    if args.command == "dockerfiles":
        for path in write_dockerfiles(TEMPLATES, build_dir, dockerfile_context(config)):
            print(path)
        return 0

    metadata = repo_metadata(config.root)

    provider = ToolchainProvider(
        config.toolchains, config.build_triple, check_paths=args.no_docker
    )
    plan_builder = EnvironmentPlanBuilder(
        metadata.version_extra, config.storage, provider
    )

    jobs = list(
        expand(
            config.allocators,
            config.targets(),
            config.descriptor(config.build_triple),
            plan_builder,
            package_fingerprint,
            host=host,
        )
    )
    outputs = output_table(jobs)

    if args.command == "list":
        for name in outputs:
            print(name)
        return 0

    if args.command == "env":
        try:
            [(_, job, _)] = select_outputs(outputs, [args.output])
        except UnknownOutput as e:
            print(e, file=sys.stderr)
            return 1

        if job.error is not None:
            print("%s: %s" % (args.output, job.error), file=sys.stderr)
            return 1

        for key, value in job.plan.items():
            print("%s=%s" % (key, value))
        return 0

    names = args.outputs or [
        name for name, (_, kind) in outputs.items() if kind == KIND_BINARY
    ]

    try:
        selected = select_outputs(outputs, names)
    except UnknownOutput as e:
        print(e, file=sys.stderr)
        return 1

    if args.no_docker:
        client = None
        image = None
    else:
        client = docker_client()
        if client is None:
            return 1

        write_dockerfiles(TEMPLATES, build_dir, dockerfile_context(config))
        image = get_image(client, build_dir, config.docker["image"])

    runner = MatrixRunner(
        PackageBuilder(client, image, package),
        ArtifactCache(build_dir / "store"),
        ImagePackager(package.name, metadata, config.image),
        build_dir,
        client=client,
        dist_dir=config.root / "dist" if args.dist else None,
    )

    results = runner.run(selected, parallelism=args.jobs)

    print_diagnostics(results)
    print_status_table(results)

    if not all(r.ok for r in results):
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
