"""
Validation report generation for inktrace.

Writes the check results and run diagnostics of a document as JSON and as
a human-readable summary.
"""

import os

from inktrace.io.save_artifacts import ensure_dir, save_json
from inktrace.tracer import get_tracer, trace


@trace(label="generate_report")
def generate_report(document, out_dir, debug_writer=None):
    """
    Generate validation report files.

    Creates:
    - validation_report.json: check results, diagnostics and run summary
    - validation_summary.txt: human-readable summary

    Returns:
        (report_path, summary_path)
    """
    tracer = get_tracer()

    report = document.validation
    ensure_dir(out_dir)

    report_path = os.path.join(out_dir, "validation_report.json")
    save_json(
        {
            "width": document.width,
            "height": document.height,
            "byte_size": document.byte_size,
            "palette_size": document.palette_size,
            "fallback_mode": document.fallback_mode,
            "path_count": document.path_count,
            "layer_path_counts": document.layer_path_counts,
            "states": [s.value for s in document.states],
            "checks": [c.model_dump(mode="json") for c in report.checks],
            "diagnostics": [d.model_dump(mode="json") for d in document.diagnostics],
        },
        report_path,
    )

    passed = [c for c in report.checks if c.passed]
    failed = [c for c in report.checks if not c.passed]

    summary_lines = ["inktrace Validation Report", "=" * 40, ""]
    summary_lines.append(f"Canvas: {document.width}x{document.height}")
    summary_lines.append(f"Palette: {document.palette_size} colors, fallback={document.fallback_mode}")
    summary_lines.append(f"Paths: {document.path_count} in {document.layer_count} groups, {document.byte_size} bytes")
    summary_lines.append("")
    summary_lines.append(f"Total checks: {len(report.checks)}")
    summary_lines.append(f"Passed: {len(passed)}")
    summary_lines.append(f"Failed: {len(failed)}")
    summary_lines.append("")

    if failed:
        summary_lines.append("ISSUES:")
        summary_lines.append("-" * 40)
        for check in failed:
            summary_lines.append(format_check_result(check))
        summary_lines.append("")

    if document.diagnostics:
        summary_lines.append("DIAGNOSTICS:")
        summary_lines.append("-" * 40)
        for diagnostic in document.diagnostics:
            summary_lines.append(f"[{diagnostic.kind.value}] {diagnostic.stage}: {diagnostic.message}")
        summary_lines.append("")

    summary_lines.append("ALL CHECKS:")
    summary_lines.append("-" * 40)
    for check in report.checks:
        status = "PASS" if check.passed else "FAIL"
        summary_lines.append(f"[{status}] {check.rule_id}: {check.message}")

    summary_path = os.path.join(out_dir, "validation_summary.txt")
    with open(summary_path, "w", encoding="utf-8") as f:
        f.write("\n".join(summary_lines) + "\n")

    tracer.event(f"Report saved: {len(report.checks)} checks, {report.error_count} errors")

    if debug_writer:
        debug_writer.save_json(report, "validate", "validation_report.json")

    return report_path, summary_path


def format_check_result(check):
    """Format a single check result for display."""
    status = "PASS" if check.passed else "FAIL"
    severity = check.severity.value.upper()
    return f"[{status}][{severity}] {check.rule_id}: {check.message}"
