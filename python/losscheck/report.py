"""Report rendering: CSV, JSON and a standalone HTML page."""
import csv
import html
import io
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Sequence, TextIO, Union

from .types import AnalysisResult, BatchSummary, FlagKind, Verdict

logger = logging.getLogger(__name__)

CSV_COLUMNS = (
    'verdict',
    'filepath',
    'bitrate_kbps',
    'combined_score',
    'spectral_score',
    'binary_score',
    'flags',
    'encoder',
    'lowpass',
)

FLAG_DESCRIPTIONS = {
    FlagKind.LOWPASS_MISMATCH: "Encoder tag lowpass is far below what the declared bitrate keeps",
    FlagKind.MULTI_ENCODER_SIGS: "Signatures of more than one encoder found in the file",
    FlagKind.IRREGULAR_FRAMES: "Constant-bitrate frames are not evenly spaced",
    FlagKind.SEVERE_HF_DAMAGE: "10-15 kHz to 17-20 kHz energy drop above 40 dB",
    FlagKind.HF_CUTOFF_DETECTED: "10-15 kHz to 17-20 kHz energy drop above 25 dB",
    FlagKind.POSSIBLE_LOSSY_ORIGIN: "10-15 kHz to 17-20 kHz energy drop above 15 dB",
    FlagKind.STEEP_HF_ROLLOFF: "High frequencies fall off too sharply for the declared quality",
    FlagKind.DEAD_UPPER_BAND: "17-20 kHz has essentially no energy",
    FlagKind.CLIFF_AT_20KHZ: "Sharp energy cliff at 20 kHz (320 kbps encoder cutoff)",
    FlagKind.WEAK_ULTRASONIC_CONTENT: "20-22 kHz is weaker than expected",
    FlagKind.DEAD_ULTRASONIC_BAND: "20-22 kHz is dead: large drop and no noise-like content",
}

_VERDICT_LABELS = {
    Verdict.OK: 'Clean',
    Verdict.SUSPECT: 'Suspect',
    Verdict.TRANSCODE: 'Transcode',
    Verdict.ERROR: 'Error',
}


def _flags_text(result: AnalysisResult) -> str:
    if not result.flags:
        return '-'
    return ';'.join(str(f) for f in result.flags)


def _lowpass_text(result: AnalysisResult) -> str:
    return str(result.lowpass) if result.lowpass else 'n/a'


def _timestamp() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace('+00:00', 'Z')


# ---------------------------------------------------------------------------
# CSV
# ---------------------------------------------------------------------------

def write_csv(stream: TextIO, results: Sequence[AnalysisResult]) -> None:
    writer = csv.writer(stream, lineterminator='\n')
    writer.writerow(CSV_COLUMNS)
    for r in results:
        writer.writerow([
            r.verdict.value,
            r.path,
            r.bitrate,
            r.combined_score,
            r.spectral_score,
            r.binary_score,
            _flags_text(r),
            r.encoder,
            _lowpass_text(r),
        ])


# ---------------------------------------------------------------------------
# JSON
# ---------------------------------------------------------------------------

def build_json(results: Sequence[AnalysisResult],
               summary: Optional[BatchSummary] = None) -> Dict[str, Any]:
    summary = summary or BatchSummary.from_results(results)
    return {
        'generated': _timestamp(),
        'summary': summary.to_dict(),
        'files': [r.to_dict() for r in results],
    }


def write_json(stream: TextIO, results: Sequence[AnalysisResult],
               summary: Optional[BatchSummary] = None) -> None:
    json.dump(build_json(results, summary), stream, indent=2)
    stream.write('\n')


# ---------------------------------------------------------------------------
# HTML
# ---------------------------------------------------------------------------

_HTML_HEAD = """<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="UTF-8">
<meta name="viewport" content="width=device-width, initial-scale=1.0">
<title>losscheck - Transcode Analysis Report</title>
<style>
  :root { --bg: #1a1a2e; --card: #16213e; --text: #eee; --dim: #888;
          --ok: #00d26a; --suspect: #f5a623; --transcode: #ff3860; --error: #666; }
  * { box-sizing: border-box; margin: 0; padding: 0; }
  body { font-family: -apple-system, 'Segoe UI', sans-serif; background: var(--bg);
         color: var(--text); line-height: 1.6; padding: 2rem; }
  .container { max-width: 1400px; margin: 0 auto; }
  h1 { font-size: 1.8rem; margin-bottom: 0.5rem; }
  .subtitle { color: var(--dim); margin-bottom: 2rem; }
  .stats { display: grid; grid-template-columns: repeat(auto-fit, minmax(150px, 1fr));
           gap: 1rem; margin-bottom: 2rem; }
  .stat { background: var(--card); padding: 1.25rem; border-radius: 12px; text-align: center; }
  .stat-value { font-size: 2rem; font-weight: 700; }
  .stat-label { color: var(--dim); font-size: 0.85rem; text-transform: uppercase; }
  .stat.ok .stat-value { color: var(--ok); }
  .stat.suspect .stat-value { color: var(--suspect); }
  .stat.transcode .stat-value { color: var(--transcode); }
  .stat.error .stat-value { color: var(--error); }
  table { width: 100%; border-collapse: collapse; background: var(--card); border-radius: 12px; }
  th, td { padding: 0.75rem 1rem; text-align: left; }
  th { font-size: 0.8rem; text-transform: uppercase; color: var(--dim); }
  .verdict { padding: 0.25rem 0.75rem; border-radius: 20px; font-size: 0.75rem; font-weight: 600; }
  .verdict.ok { color: var(--ok); }
  .verdict.suspect { color: var(--suspect); }
  .verdict.transcode { color: var(--transcode); }
  .verdict.error { color: var(--error); }
  .score-bar { width: 60px; height: 6px; background: rgba(255,255,255,0.1); border-radius: 3px;
               display: inline-block; vertical-align: middle; margin-right: 0.5rem; }
  .score-fill { height: 100%; border-radius: 3px; }
  .score-fill.low { background: var(--ok); }
  .score-fill.medium { background: var(--suspect); }
  .score-fill.high { background: var(--transcode); }
  .flag { display: inline-block; background: rgba(255,255,255,0.05); padding: 0.15rem 0.5rem;
          border-radius: 4px; margin: 0.1rem; font-family: monospace; font-size: 0.8rem; }
  .filepath, .encoder { font-family: monospace; font-size: 0.85rem; }
  .dim { color: var(--dim); }
  .legend { margin-top: 2rem; padding: 1.5rem; background: var(--card); border-radius: 12px; }
  .legend-item { font-size: 0.85rem; }
</style>
</head>
<body>
<div class="container">
<h1>losscheck - Transcode Analysis Report</h1>
<p class="subtitle">Generated {generated}</p>
"""


def _score_class(result: AnalysisResult) -> str:
    if result.verdict is Verdict.TRANSCODE:
        return 'high'
    if result.verdict is Verdict.SUSPECT:
        return 'medium'
    return 'low'


def _html_row(r: AnalysisResult) -> str:
    verdict_class = r.verdict.value.lower()
    if r.flags:
        flags_html = ''.join(f'<span class="flag">{html.escape(str(f))}</span>' for f in r.flags)
    elif r.error:
        flags_html = f'<span class="dim">{html.escape(r.error)}</span>'
    else:
        flags_html = '<span class="dim">-</span>'
    lowpass = f' ({r.lowpass}Hz)' if r.lowpass else ''
    return (
        '<tr>'
        f'<td><span class="verdict {verdict_class}">{r.verdict.value}</span></td>'
        f'<td><div class="score-bar"><div class="score-fill {_score_class(r)}" '
        f'style="width: {r.combined_score}%"></div></div>{r.combined_score}%</td>'
        f'<td>{r.bitrate}k</td>'
        f'<td class="dim">{r.spectral_score}%</td>'
        f'<td class="dim">{r.binary_score}%</td>'
        f'<td class="encoder">{html.escape(r.encoder)}{lowpass}</td>'
        f'<td class="flags">{flags_html}</td>'
        f'<td class="filepath" title="{html.escape(r.path)}">{html.escape(Path(r.path).name)}</td>'
        '</tr>\n'
    )


def render_html(results: Sequence[AnalysisResult],
                summary: Optional[BatchSummary] = None) -> str:
    """Render a standalone HTML page; rows are sorted by combined score, highest first."""
    summary = summary or BatchSummary.from_results(results)
    out = io.StringIO()
    out.write(_HTML_HEAD.replace('{generated}', _timestamp()))

    out.write('<div class="stats">\n')
    counts = (
        (Verdict.OK, summary.ok),
        (Verdict.SUSPECT, summary.suspect),
        (Verdict.TRANSCODE, summary.transcode),
        (Verdict.ERROR, summary.error),
    )
    for verdict, count in counts:
        out.write(
            f'<div class="stat {verdict.value.lower()}"><div class="stat-value">{count}</div>'
            f'<div class="stat-label">{_VERDICT_LABELS[verdict]}</div></div>\n'
        )
    out.write(
        f'<div class="stat"><div class="stat-value">{summary.total}</div>'
        '<div class="stat-label">Total Files</div></div>\n</div>\n'
    )

    out.write(
        '<table>\n<thead><tr><th>Verdict</th><th>Score</th><th>Bitrate</th>'
        '<th>Spectral</th><th>Binary</th><th>Encoder</th><th>Flags</th><th>File</th>'
        '</tr></thead>\n<tbody>\n'
    )
    for r in sorted(results, key=lambda r: r.combined_score, reverse=True):
        out.write(_html_row(r))
    out.write('</tbody>\n</table>\n')

    out.write('<div class="legend">\n<h3>Flag Reference</h3>\n')
    for kind, description in FLAG_DESCRIPTIONS.items():
        out.write(
            f'<div class="legend-item"><code>{kind.value}</code>: '
            f'{html.escape(description)}</div>\n'
        )
    out.write('</div>\n</div>\n</body>\n</html>\n')
    return out.getvalue()


def write_html(stream: TextIO, results: Sequence[AnalysisResult],
               summary: Optional[BatchSummary] = None) -> None:
    stream.write(render_html(results, summary))


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------

def report_format(path: Union[str, Path]) -> str:
    """'html', 'json' or 'csv', chosen by file extension."""
    suffix = Path(path).suffix.lower()
    if suffix in ('.html', '.htm'):
        return 'html'
    if suffix == '.json':
        return 'json'
    return 'csv'


def write_report(path: Union[str, Path], results: Sequence[AnalysisResult],
                 summary: Optional[BatchSummary] = None) -> str:
    """Write a report file in the format implied by ``path``; returns the format."""
    fmt = report_format(path)
    with open(path, 'w', encoding='utf-8', newline='') as f:
        if fmt == 'html':
            write_html(f, results, summary)
        elif fmt == 'json':
            write_json(f, results, summary)
        else:
            write_csv(f, results)
    logger.info(f"Wrote {fmt.upper()} report to {path}")
    return fmt
