#!/usr/bin/env python3
"""
Copyright 2025 7th software Ltd.

Licensed under the Apache License, Version 2.0 (the "License"); you may not use this file except in compliance with the
License. You may obtain a copy of the License at

    http://www.apache.org/licenses/LICENSE-2.0

Unless required by applicable law or agreed to in writing, software distributed under the License is distributed on an
"AS IS" BASIS, WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied. See the License for the specific
language governing permissions and limitations under the License.

Output helpers for DOCAT.

`echo` writes progress chatter to stdout when verbosity is enabled. `error` and `notify` always write to stderr, so
that they never get mixed into an updated source file printed on stdout. `progress` brackets a long-running,
non-cancellable operation (the completion request) with a start and finish message.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator
import sys
import time


VERBOSE = False


def echo(*args, **kwargs):
    """
    Write messages to stdout if the verbosity level is enabled.

    Parameters:
    - `*args`: The message(s) to be printed.
    - `**kwargs`: Additional keyword arguments to pass to the `print` function.
    """

    if VERBOSE:
        kwargs["flush"] = True
        print(*args, **kwargs)


def _write_stderr(*args) -> None:
    msg = " ".join(str(a) for a in args)
    sys.stderr.write(msg + "\n")
    sys.stderr.flush()


def error(*args, **kwargs):
    """
    Write an error message to stderr, regardless of the verbosity level.

    Parameters:
    - `*args`: Joined with spaces into a single message.
    - `**kwargs`: Not used.
    """

    _write_stderr(*args)


def notify(*args, **kwargs):
    """
    Write a user notification (e.g. "Documentation generated successfully!") to stderr.
    """

    _write_stderr(*args)


@contextmanager
def progress(title: str) -> Iterator[None]:
    """
    Announce a non-cancellable operation for the duration of the `with` block.

    The title is always shown. When verbose, the elapsed time is reported once the block completes successfully.
    """

    notify(title)
    t0 = time.time()
    yield
    echo(f"{title.rstrip('.')} took {time.time() - t0:.1f}s")


def set_verbosity(state: bool):
    """
    Enable or disable program verbosity.

    Parameters:
    - `state`: Set verbosity state to enabled (`True`) or disabled (`False`).
    """

    global VERBOSE

    VERBOSE = state
