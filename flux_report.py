"""
Report Generation
=================
Writes the final summary and the full result log to JSON and HTML files.
"""

import html
import json
import logging
from collections import Counter
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Tuple, Dict, Any

from flux_metrics import RequestOutcome, Summary

logger = logging.getLogger(__name__)

# (label, exclusive upper bound in ms); the last bucket is open-ended
LATENCY_BUCKETS: List[Tuple[str, float]] = [
    ("0-50ms", 50),
    ("50-100ms", 100),
    ("100-200ms", 200),
    ("200-500ms", 500),
    ("500-1000ms", 1000),
    ("1000ms+", float("inf")),
]


def latency_distribution(results: List[RequestOutcome]) -> List[Tuple[str, int]]:
    """Count outcomes per latency bucket, in bucket order."""
    counts = [0] * len(LATENCY_BUCKETS)
    for result in results:
        for i, (_, upper) in enumerate(LATENCY_BUCKETS):
            if result.latency_ms < upper:
                counts[i] += 1
                break
    return [(label, count) for (label, _), count in zip(LATENCY_BUCKETS, counts)]


def status_code_distribution(results: List[RequestOutcome]) -> Dict[int, int]:
    return dict(sorted(Counter(r.status_code for r in results).items()))


def scenario_breakdown(results: List[RequestOutcome]) -> Dict[str, Dict[str, Any]]:
    """Per-step request count, error count and mean latency."""
    breakdown: Dict[str, Dict[str, Any]] = {}
    for r in results:
        key = r.scenario_name or "(simple)"
        entry = breakdown.setdefault(key, {"requests": 0, "errors": 0, "latency_sum": 0})
        entry["requests"] += 1
        entry["latency_sum"] += r.latency_ms
        if r.error:
            entry["errors"] += 1

    return {
        name: {
            "requests": e["requests"],
            "errors": e["errors"],
            "avg_latency_ms": round(e["latency_sum"] / e["requests"], 2),
        }
        for name, e in breakdown.items()
    }


def _ensure_parent(output_path: str):
    Path(output_path).parent.mkdir(parents=True, exist_ok=True)


class Reporter:
    """Serializes a finished run. Has no way to feed back into the engine."""

    def __init__(self, summary: Summary, results: List[RequestOutcome]):
        self.summary = summary
        self.results = results

    def to_dict(self) -> Dict[str, Any]:
        return {
            "summary": self.summary.to_dict(),
            "results": [r.to_dict() for r in self.results],
        }

    def generate_json(self, output_path: str) -> str:
        json_str = json.dumps(self.to_dict(), indent=2)
        _ensure_parent(output_path)
        Path(output_path).write_text(json_str)
        logger.info("JSON report saved to: %s", output_path)
        return json_str

    def generate_html(self, output_path: str) -> str:
        html_str = self.render_html()
        _ensure_parent(output_path)
        Path(output_path).write_text(html_str, encoding="utf-8")
        logger.info("HTML report saved to: %s", output_path)
        return html_str

    def render_html(self) -> str:
        s = self.summary
        total = max(1, s.total_requests)
        error_color = "#22c55e" if s.error_rate <= 5 else "#ef4444"

        distribution = latency_distribution(self.results)
        max_bucket = max([count for _, count in distribution] + [1])
        distribution_rows = "".join(
            f"""
                    <tr>
                        <td>{label}</td>
                        <td>{count:,}</td>
                        <td><div class="bar"><div class="bar-fill" style="width: {count / max_bucket * 100:.1f}%; background: #3b82f6"></div></div></td>
                    </tr>"""
            for label, count in distribution
        )

        status_rows = "".join(
            f"""
                    <tr>
                        <td style="color: {'#22c55e' if 200 <= code < 300 else '#ef4444' if code == 0 or code >= 500 else '#f59e0b'}">{code}</td>
                        <td>{count:,}</td>
                        <td>{count / total * 100:.1f}%</td>
                    </tr>"""
            for code, count in status_code_distribution(self.results).items()
        )

        scenario_rows = "".join(
            f"""
                    <tr>
                        <td>{html.escape(name)}</td>
                        <td>{entry['requests']:,}</td>
                        <td>{entry['errors']:,}</td>
                        <td>{entry['avg_latency_ms']:.2f}</td>
                    </tr>"""
            for name, entry in scenario_breakdown(self.results).items()
        )

        errors = Counter(r.error for r in self.results if r.error)
        error_rows = "".join(
            f"""
                    <tr>
                        <td>{html.escape(message[:200])}</td>
                        <td>{count:,}</td>
                    </tr>"""
            for message, count in errors.most_common(20)
        ) or """
                    <tr><td colspan="2">No errors recorded</td></tr>"""

        return f"""<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>Flux Load Test Report</title>
    <style>
        * {{ margin: 0; padding: 0; box-sizing: border-box; }}
        body {{ font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, Oxygen, Ubuntu, sans-serif; background: #0f172a; color: #e2e8f0; line-height: 1.6; padding: 2rem; }}
        .container {{ max-width: 1400px; margin: 0 auto; }}
        h1 {{ font-size: 2rem; margin-bottom: 0.5rem; color: #f8fafc; }}
        .subtitle {{ color: #94a3b8; margin-bottom: 2rem; }}
        .grid {{ display: grid; grid-template-columns: repeat(auto-fit, minmax(240px, 1fr)); gap: 1.5rem; margin-bottom: 2rem; }}
        .card {{ background: #1e293b; border-radius: 12px; padding: 1.5rem; border: 1px solid #334155; }}
        .card-title {{ font-size: 0.875rem; color: #94a3b8; text-transform: uppercase; letter-spacing: 0.05em; margin-bottom: 0.5rem; }}
        .card-value {{ font-size: 2rem; font-weight: 700; color: #f8fafc; }}
        .section {{ margin-bottom: 2rem; }}
        .section-title {{ font-size: 1.25rem; margin-bottom: 1rem; color: #f8fafc; padding-bottom: 0.5rem; border-bottom: 2px solid #3b82f6; }}
        table {{ width: 100%; border-collapse: collapse; }}
        th, td {{ padding: 0.75rem; text-align: left; border-bottom: 1px solid #334155; }}
        th {{ color: #94a3b8; font-weight: 600; }}
        .bar {{ height: 8px; border-radius: 4px; background: #334155; overflow: hidden; }}
        .bar-fill {{ height: 100%; border-radius: 4px; }}
    </style>
</head>
<body>
    <div class="container">
        <h1>Flux Load Test Report</h1>
        <p class="subtitle">
            Started: {s.start_time.strftime('%Y-%m-%d %H:%M:%S UTC')} |
            Finished: {s.end_time.strftime('%Y-%m-%d %H:%M:%S UTC')} |
            Generated: {datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M:%S UTC')}
        </p>

        <div class="section">
            <div class="grid">
                <div class="card">
                    <div class="card-title">Total Requests</div>
                    <div class="card-value">{s.total_requests:,}</div>
                </div>
                <div class="card">
                    <div class="card-title">Throughput</div>
                    <div class="card-value">{s.throughput_rps:,.2f} req/s</div>
                </div>
                <div class="card">
                    <div class="card-title">Error Rate</div>
                    <div class="card-value" style="color: {error_color}">{s.error_rate:.2f}%</div>
                </div>
                <div class="card">
                    <div class="card-title">Duration</div>
                    <div class="card-value">{s.total_duration_secs:.2f}s</div>
                </div>
            </div>
        </div>

        <div class="section">
            <h2 class="section-title">Latency Percentiles (ms)</h2>
            <div class="card">
                <table>
                    <tr><th>Min</th><th>P50</th><th>P90</th><th>P95</th><th>P99</th><th>Max</th><th>Mean</th></tr>
                    <tr>
                        <td>{s.min_latency_ms}</td>
                        <td>{s.p50_latency_ms}</td>
                        <td>{s.p90_latency_ms}</td>
                        <td>{s.p95_latency_ms}</td>
                        <td>{s.p99_latency_ms}</td>
                        <td>{s.max_latency_ms}</td>
                        <td>{s.mean_latency_ms:.2f}</td>
                    </tr>
                </table>
            </div>
        </div>

        <div class="section">
            <h2 class="section-title">Latency Distribution</h2>
            <div class="card">
                <table>
                    <tr><th>Bucket</th><th>Requests</th><th></th></tr>{distribution_rows}
                </table>
            </div>
        </div>

        <div class="section">
            <h2 class="section-title">Status Code Distribution</h2>
            <div class="card">
                <table>
                    <tr><th>Code</th><th>Count</th><th>Percentage</th></tr>{status_rows}
                </table>
            </div>
        </div>

        <div class="section">
            <h2 class="section-title">Scenarios</h2>
            <div class="card">
                <table>
                    <tr><th>Step</th><th>Requests</th><th>Errors</th><th>Avg Latency (ms)</th></tr>{scenario_rows}
                </table>
            </div>
        </div>

        <div class="section">
            <h2 class="section-title">Errors</h2>
            <div class="card">
                <table>
                    <tr><th>Message</th><th>Count</th></tr>{error_rows}
                </table>
            </div>
        </div>
    </div>
</body>
</html>
"""
