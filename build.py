#!/usr/bin/env python3
# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.

"""Run the crossbuild CLI from a project-local virtualenv."""

import os
import pathlib
import subprocess
import sys
import venv

ROOT = pathlib.Path(os.path.abspath(__file__)).parent
VENV = ROOT / "build" / "venv"
PYTHON = VENV / "bin" / "python"


def main():
    if not PYTHON.exists():
        venv.create(VENV, with_pip=True)
        subprocess.run(
            [str(PYTHON), "-m", "pip", "install", "-e", str(ROOT)], check=True
        )

    env = dict(os.environ, PYTHONUNBUFFERED="1")
    os.execve(str(PYTHON), [str(PYTHON), "-m", "crossbuild", *sys.argv[1:]], env)


if __name__ == "__main__":
    try:
        main()
    except subprocess.CalledProcessError as e:
        sys.exit(e.returncode)
