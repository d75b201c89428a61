"""Exception hierarchy for pyxis.

Only `OptionsError` is meant to reach callers of `Runner.run()`/`PYXIS()`;
the others are raised inside one host's scan and converted to data there.
"""

from __future__ import annotations


class PyxisError(Exception):
    """Base class for all pyxis errors."""


class OptionsError(PyxisError, ValueError):
    """Invalid configuration, detected before any host is scanned."""


class ScanError(PyxisError):
    """A host could not be scanned on any scheme/port combination."""


class TransportError(PyxisError):
    """An HTTP fetch failed after exhausting its retries."""


class ClassificationError(PyxisError):
    """CDN classification failed (empty host, DNS failure, timeout)."""
