"""Session harness for package-manager specification suites."""

from __future__ import annotations

__version__ = "0.1.0"
