"""Face building blocks around the embedding model (types/oracle/collector/matcher).

The oracle module imports InsightFace eagerly, so it is not re-exported here;
import it explicitly where a real model is needed.
"""
from __future__ import annotations
