# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.

import threading

# Jobs run on worker threads, so each thread carries its own prefix and
# log file.
_STATE = threading.local()


def set_logger(prefix, fh):
    _STATE.prefix = prefix
    _STATE.fh = fh


def get_prefix():
    return getattr(_STATE, "prefix", None)


def log(msg):
    if isinstance(msg, bytes):
        msg_str = msg.decode("utf-8", "replace")
        msg_bytes = msg
    else:
        msg_str = msg
        msg_bytes = msg.encode("utf-8", "replace")

    print("%s> %s" % (get_prefix(), msg_str))

    fh = getattr(_STATE, "fh", None)
    if fh:
        fh.write(msg_bytes + b"\n")


def log_raw(data):
    fh = getattr(_STATE, "fh", None)
    if fh:
        fh.write(data)
