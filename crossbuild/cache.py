# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.

"""Content-addressed store of realized build artifacts."""

import concurrent.futures
import pathlib
import shutil
import tempfile
import threading

from .logging import log


class ArtifactCache(object):
    """Stores artifacts under the hash of all their inputs.

    Concurrent requests for the same fingerprint are collapsed into a single
    execution whose result (or exception) every caller receives. Failures
    are never persisted.
    """

    def __init__(self, root: pathlib.Path):
        self.root = root
        self._lock = threading.Lock()
        self._inflight = {}

    def path_for(self, fingerprint: str, name: str) -> pathlib.Path:
        return self.root / ("%s-%s" % (fingerprint[0:32], name))

    def lookup(self, fingerprint: str, name: str):
        path = self.path_for(fingerprint, name)
        if path.exists():
            return path

        return None

    def realize(self, fingerprint: str, name: str, produce):
        """Obtain the artifact for a fingerprint, producing it if needed.

        ``produce`` is called with an empty directory to populate.
        """
        with self._lock:
            path = self.lookup(fingerprint, name)
            if path:
                log("using cached artifact %s" % path)
                return path

            future = self._inflight.get(fingerprint)
            owner = future is None
            if owner:
                future = concurrent.futures.Future()
                self._inflight[fingerprint] = future

        if not owner:
            log("waiting on in-progress build of %s" % fingerprint[0:32])
            return future.result()

        try:
            path = self._produce(fingerprint, name, produce)
        except BaseException as e:
            future.set_exception(e)
            raise
        else:
            future.set_result(path)
            return path
        finally:
            with self._lock:
                del self._inflight[fingerprint]

    def _produce(self, fingerprint, name, produce):
        self.root.mkdir(parents=True, exist_ok=True)
        dest = self.path_for(fingerprint, name)

        # Populate a temporary directory and rename it into place so a
        # partially written artifact is never visible.
        tmp = pathlib.Path(tempfile.mkdtemp(prefix=".tmp-", dir=self.root))
        try:
            produce(tmp)
            tmp.rename(dest)
        finally:
            if tmp.exists():
                shutil.rmtree(tmp)

        log("stored artifact %s" % dest)

        return dest
