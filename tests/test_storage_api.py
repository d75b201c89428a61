from __future__ import annotations

import csv
import io
import json
from pathlib import Path

import pytest

from pyxis.result import ScanOutcome
from pyxis.storage import export_results, output_format


def _results():
    return [
        ScanOutcome(
            full_url="https://example.com",
            host="example.com",
            ip="93.184.216.34",
            port=443,
            tls=True,
            title="Example, Inc.",
            status_code=200,
            content_length=1256,
            response_time=87,
            favicon_hash="-1137974327",
        ),
        ScanOutcome.failed("down.example"),
    ]


def test_output_format_by_extension():
    assert output_format("out.csv") == "csv"
    assert output_format("OUT.JSON") == "json"
    assert output_format("out.txt") == "txt"
    assert output_format("results") == "txt"
    assert output_format("out.xlsx") == "txt"


def test_export_txt_lines(tmp_path: Path):
    out = tmp_path / "alive.txt"
    assert export_results(_results(), str(out)) == str(out)
    assert out.read_text(encoding="utf-8") == "https://example.com\tExample, Inc.\t-1137974327\n"


def test_export_csv_has_bom_and_header(tmp_path: Path):
    out = tmp_path / "alive.csv"
    export_results(_results(), str(out))

    raw = out.read_bytes()
    assert raw.startswith(b"\xef\xbb\xbf")
    rows = list(csv.reader(io.StringIO(raw.decode("utf-8-sig"))))
    assert rows[0] == ["FullURL", "Title", "StatusCode", "Faviconhash", "ContentLength", "ResponseTime", "Host", "IP", "Port", "TLS"]
    assert rows[1] == [
        "https://example.com",
        "Example, Inc.",
        "200",
        "-1137974327",
        "1256",
        "87",
        "example.com",
        "93.184.216.34",
        "443",
        "true",
    ]
    assert len(rows) == 2


def test_export_json_array(tmp_path: Path):
    out = tmp_path / "alive.json"
    export_results(_results(), str(out))
    data = json.loads(out.read_text(encoding="utf-8"))
    assert len(data) == 1
    assert data[0]["fullurl"] == "https://example.com"
    assert data[0]["tls"] is True
    assert "flag" not in data[0]


def test_export_creates_parent_folders(tmp_path: Path):
    out = tmp_path / "nested" / "dir" / "alive.txt"
    export_results(_results(), str(out))
    assert out.is_file()


def test_export_without_alive_hosts_writes_nothing(tmp_path: Path):
    out = tmp_path / "alive.txt"
    export_results([ScanOutcome.failed("down.example")], str(out))
    assert not out.exists()


def test_export_rejects_directory_path(tmp_path: Path):
    with pytest.raises(IsADirectoryError):
        export_results(_results(), str(tmp_path))
