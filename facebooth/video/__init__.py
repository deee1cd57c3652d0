"""Frame acquisition: camera sources and the periodic acquisition loop."""

from __future__ import annotations
