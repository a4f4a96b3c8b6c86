"""Startup hook for Python subprocesses spawned under the harness.

The harness prepends this directory to ``PYTHONPATH``, so the ``site``
module imports this file when any child interpreter starts.
"""

from __future__ import annotations

import os
import sys

ENV_SPEC_PLATFORM = "SPECHARNESS_SPEC_PLATFORM"

if os.environ.get("SPECHARNESS_SPEC_RUN") == "true":
    if platform_override := os.environ.get(ENV_SPEC_PLATFORM):
        sys.platform = platform_override
