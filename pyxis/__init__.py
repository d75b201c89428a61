"""Public package surface for pyxis.

Importing `pyxis` exposes the high-level API function (`PYXIS`), the
`Runner` it is built on, the option/result types and the package version,
keeping engine internals hidden by default.
"""

from .core import PYXIS, Runner
from .options import Options
from .result import ResultStore, ScanOutcome
from .version import __version__

__all__ = ["PYXIS", "Runner", "Options", "ResultStore", "ScanOutcome", "__version__"]
