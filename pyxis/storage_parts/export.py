from __future__ import annotations

"""Result file writers.

The format is picked from the output path extension (`.csv`, `.json`,
anything else is plain text). Only successful outcomes are written.
"""

import csv
import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List

from ..result import ScanOutcome

CSV_HEADER = ["FullURL", "Title", "StatusCode", "Faviconhash", "ContentLength", "ResponseTime", "Host", "IP", "Port", "TLS"]
UTF8_BOM = "\ufeff"

FORMAT_TXT = "txt"
FORMAT_CSV = "csv"
FORMAT_JSON = "json"

logger = logging.getLogger("pyxis")


def output_format(path: str) -> str:
    suffix = Path(path).suffix.lower()
    if suffix == ".csv":
        return FORMAT_CSV
    if suffix == ".json":
        return FORMAT_JSON
    return FORMAT_TXT


def _rows_for_export(results: Iterable[ScanOutcome]) -> List[Dict[str, Any]]:
    rows: List[Dict[str, Any]] = []
    for item in results:
        if not item.ok:
            continue
        rows.append(
            {
                "fullurl": item.full_url,
                "host": item.host,
                "ip": item.ip,
                "port": item.port,
                "tls": item.tls,
                "title": item.title,
                "statuscode": item.status_code,
                "contentlength": item.content_length,
                "responsetime": item.response_time,
                "faviconhash": item.favicon_hash,
            }
        )
    return rows


def _txt_line(row: Dict[str, Any]) -> str:
    return f"{row['fullurl']}\t{row['title']}\t{row['faviconhash']}\n"


def _csv_row(row: Dict[str, Any]) -> List[str]:
    return [
        row["fullurl"],
        row["title"],
        str(row["statuscode"]),
        row["faviconhash"],
        str(row["contentlength"]),
        str(row["responsetime"]),
        row["host"],
        row["ip"],
        str(row["port"]),
        "true" if row["tls"] else "false",
    ]


def export_results(results: Iterable[ScanOutcome], output_path: str) -> str:
    """Write `results` to `output_path` and return the path written.

    Missing parent folders are created. Nothing is written when there is no
    successful outcome to export.
    """
    rows = _rows_for_export(results)
    out = Path(output_path)
    if not rows:
        logger.info("No alive hosts to write to %s", out)
        return str(out)

    if out.exists() and out.is_dir():
        raise IsADirectoryError(f"Output path is a directory: {out}")
    out.parent.mkdir(parents=True, exist_ok=True)

    fmt = output_format(output_path)
    if fmt == FORMAT_CSV:
        with out.open("w", encoding="utf-8", newline="") as fh:
            fh.write(UTF8_BOM)
            writer = csv.writer(fh)
            writer.writerow(CSV_HEADER)
            for row in rows:
                writer.writerow(_csv_row(row))
    elif fmt == FORMAT_JSON:
        out.write_text(json.dumps(rows, ensure_ascii=False, indent=2) + "\n", encoding="utf-8")
    else:
        with out.open("w", encoding="utf-8") as fh:
            for row in rows:
                fh.write(_txt_line(row))
    return str(out)
