"""Tests for report rendering."""

import csv
import io
import json

from losscheck import AnalysisResult, DetectionFlag, EncoderMetadata, FlagKind, Verdict
from losscheck.report import (
    CSV_COLUMNS,
    build_json,
    render_html,
    report_format,
    write_csv,
    write_report,
)


def _results():
    return [
        AnalysisResult(
            path="/music/a, b.mp3",
            verdict=Verdict.TRANSCODE,
            bitrate=320,
            binary_score=35,
            spectral_score=40,
            combined_score=75,
            flags=(
                DetectionFlag(FlagKind.LOWPASS_MISMATCH, "16000Hz<20500Hz@320kbps"),
                DetectionFlag(FlagKind.SEVERE_HF_DAMAGE, "52.0dB"),
            ),
            encoder_metadata=EncoderMetadata(encoder="LAME3.100", lowpass=16000),
            encoder="LAME3.100",
        ),
        AnalysisResult(path="/music/clean.mp3", verdict=Verdict.OK, bitrate=256),
        AnalysisResult(path="/music/<broken>.mp3", verdict=Verdict.ERROR, error="read failed"),
    ]


class TestCsv:
    def test_columns_and_rows(self):
        buf = io.StringIO()
        write_csv(buf, _results())
        rows = list(csv.reader(io.StringIO(buf.getvalue())))
        assert tuple(rows[0]) == CSV_COLUMNS
        assert rows[1] == [
            "TRANSCODE", "/music/a, b.mp3", "320", "75", "40", "35",
            "lowpass_mismatch(16000Hz<20500Hz@320kbps);severe_hf_damage(52.0dB)",
            "LAME3.100", "16000",
        ]
        assert rows[2][6] == "-"
        assert rows[2][8] == "n/a"
        assert rows[3][0] == "ERROR"

    def test_path_with_comma_is_quoted(self):
        buf = io.StringIO()
        write_csv(buf, _results()[:1])
        assert '"/music/a, b.mp3"' in buf.getvalue()


class TestJson:
    def test_structure(self):
        payload = build_json(_results())
        assert payload["generated"].endswith("Z")
        assert payload["summary"] == {"ok": 1, "suspect": 0, "transcode": 1, "error": 1, "total": 3}
        assert len(payload["files"]) == 3
        first = payload["files"][0]
        assert first["verdict"] == "TRANSCODE"
        assert first["lowpass"] == 16000
        assert first["flags"][0].startswith("lowpass_mismatch(")
        assert payload["files"][2]["error"] == "read failed"
        json.dumps(payload)


class TestHtml:
    def test_summary_and_escaping(self):
        page = render_html(_results())
        assert page.startswith("<!DOCTYPE html>")
        assert "&lt;broken&gt;.mp3" in page
        assert "<broken>" not in page
        assert "lowpass_mismatch" in page
        assert "Total Files" in page

    def test_sorted_by_score(self):
        page = render_html(_results())
        assert page.index("a, b.mp3") < page.index("clean.mp3")

    def test_legend_lists_every_flag(self):
        page = render_html([])
        for kind in FlagKind:
            assert f"<code>{kind.value}</code>" in page


class TestWriteReport:
    def test_format_by_extension(self):
        assert report_format("out.html") == "html"
        assert report_format("OUT.HTM") == "html"
        assert report_format("out.json") == "json"
        assert report_format("out.csv") == "csv"
        assert report_format("out.txt") == "csv"

    def test_writes_each_format(self, tmp_path):
        results = _results()
        assert write_report(tmp_path / "r.csv", results) == "csv"
        assert (tmp_path / "r.csv").read_text().startswith("verdict,filepath")
        assert write_report(tmp_path / "r.json", results) == "json"
        assert json.loads((tmp_path / "r.json").read_text())["summary"]["total"] == 3
        assert write_report(tmp_path / "r.html", results) == "html"
        assert "</html>" in (tmp_path / "r.html").read_text()
