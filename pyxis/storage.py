from __future__ import annotations

"""Result persistence facade for pyxis.

Public storage API remains stable while implementation is split by concern:
- `pyxis.storage_parts.export`: row normalization and txt/csv/json writers
"""

from .storage_parts.export import export_results, output_format

__all__ = ["export_results", "output_format"]
