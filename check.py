#!/usr/bin/env python3
# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.

"""Lint, type check and test crossbuild in a development virtualenv."""

import argparse
import os
import pathlib
import subprocess
import sys
import venv

ROOT = pathlib.Path(os.path.abspath(__file__)).parent
VENV = ROOT / "venv.dev"
BIN = VENV / "bin"


def run_command(command: list[str]) -> int:
    print("$ " + " ".join(command))
    returncode = subprocess.run(command, cwd=ROOT).returncode
    print()
    return returncode


def main():
    parser = argparse.ArgumentParser(description="Check code.")
    parser.add_argument("--fix", action="store_true", help="Fix problems")
    args = parser.parse_args()

    if not (BIN / "python").exists():
        venv.create(VENV, with_pip=True)
        subprocess.run(
            [str(BIN / "python"), "-m", "pip", "install", "-e", "%s[dev]" % ROOT],
            check=True,
        )

    commands = [
        [str(BIN / "ruff"), "check", *(["--fix"] if args.fix else [])],
        [str(BIN / "ruff"), "format", *([] if args.fix else ["--check"])],
        [str(BIN / "mypy"), "crossbuild"],
        [str(BIN / "python"), "-m", "pytest", "tests"],
    ]

    if sum(run_command(command) for command in commands):
        print("Checks failed!")
        return 1

    print("Checks passed!")
    return 0


if __name__ == "__main__":
    sys.exit(main())
