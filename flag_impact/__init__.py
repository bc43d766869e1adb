"""Feature flag impact analyzer: change log, metrics, anomaly detection and LLM impact predictions."""

from .core.config import VERSION

__version__ = VERSION
