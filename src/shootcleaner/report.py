"""Report generation for enhancement batches (JSON and Markdown)."""

import json
import logging
from collections import Counter
from datetime import datetime
from pathlib import Path
from typing import Any

from shootcleaner.analysis import ImageAnalysis, summarize_decisions
from shootcleaner.engine import EnhancementJob, JobStatus

logger = logging.getLogger(__name__)

REPORT_FORMATS = {"json", "markdown", "both"}


def calculate_statistics(jobs: list[EnhancementJob]) -> dict[str, Any]:
    """Calculate batch statistics.

    Args:
        jobs: Jobs returned by ``BatchEngine.run_batch()``

    Returns:
        Statistics dictionary
    """
    completed = sum(1 for job in jobs if job.status == JobStatus.COMPLETED)
    failed = sum(1 for job in jobs if job.status == JobStatus.ERROR)

    commands_by_type = Counter(
        result.enhancement_type
        for job in jobs
        for result in job.results
        if result.success
    )

    return {
        "total_jobs": len(jobs),
        "completed": completed,
        "failed": failed,
        "success_rate": round(completed / len(jobs) * 100, 1) if jobs else 0.0,
        "commands_by_type": dict(sorted(commands_by_type.items())),
    }


def generate_json_report(
    jobs: list[EnhancementJob],
    output_path: Path,
    analyses: list[ImageAnalysis] | None = None,
) -> None:
    report: dict[str, Any] = {
        "generated_at": datetime.now().isoformat(),
        "statistics": calculate_statistics(jobs),
        "jobs": [job.to_dict() for job in jobs],
    }
    if analyses is not None:
        report["analysis"] = {
            "summary": summarize_decisions(analyses),
            "images": [analysis.to_dict() for analysis in analyses],
        }

    with open(output_path, "w", encoding="utf-8") as f:
        json.dump(report, f, indent=2)

    logger.info(f"JSON report written to: {output_path}")


def _job_lines(job: EnhancementJob) -> list[str]:
    lines = [f"#### {job.source.name}", "", f"**Source:** `{job.source}`", ""]

    if job.status == JobStatus.ERROR:
        lines.extend([f"**Error:** {job.error}", ""])
    elif job.output_path:
        lines.extend([f"**Output:** `{job.output_path}`", ""])

    commands = [r.command for r in job.results if r.success and r.command]
    if commands:
        lines.append("**Applied:**")
        lines.extend(f"- `{command}`" for command in commands)
        lines.append("")

    return lines


def generate_markdown_report(
    jobs: list[EnhancementJob],
    output_path: Path,
    analyses: list[ImageAnalysis] | None = None,
) -> None:
    stats = calculate_statistics(jobs)

    lines = [
        "# ShootCleaner Enhancement Report",
        "",
        f"**Generated:** {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}",
        "",
        "## Statistics",
        "",
        f"- **Total Jobs:** {stats['total_jobs']}",
        f"- **Completed:** {stats['completed']}",
        f"- **Failed:** {stats['failed']}",
        f"- **Success Rate:** {stats['success_rate']}%",
    ]

    if stats["commands_by_type"]:
        lines.extend(["", "### Enhancements Applied", ""])
        for enhancement_type, count in stats["commands_by_type"].items():
            lines.append(f"- **{enhancement_type}:** {count}")

    if analyses:
        summary = summarize_decisions(analyses)
        lines.extend(
            [
                "",
                "### Culling Decisions",
                "",
                f"- **Keep:** {summary['keep']}",
                f"- **Review:** {summary['review']}",
                f"- **Reject:** {summary['reject']}",
                f"- **Average Confidence:** {summary['average_confidence']}",
            ]
        )

    failed = [job for job in jobs if job.status == JobStatus.ERROR]
    completed = [job for job in jobs if job.status == JobStatus.COMPLETED]

    if failed:
        lines.extend(["", "---", "", "## Failed", ""])
        for job in failed:
            lines.extend(_job_lines(job))

    if completed:
        lines.extend(["", "---", "", "## Completed", ""])
        for job in completed:
            lines.extend(_job_lines(job))

    with open(output_path, "w", encoding="utf-8") as f:
        f.write("\n".join(lines))

    logger.info(f"Markdown report written to: {output_path}")


def generate_report(
    jobs: list[EnhancementJob],
    output_path: Path,
    format: str = "json",
    analyses: list[ImageAnalysis] | None = None,
) -> list[Path]:
    """Write the batch report.

    Args:
        jobs: Jobs returned by ``BatchEngine.run_batch()``
        output_path: Report path; its suffix is replaced per format
        format: Output format ('json', 'markdown', or 'both')
        analyses: Culling analyses to include, if the batch came from one

    Returns:
        Paths of the written reports

    Raises:
        ValueError: If format is invalid
    """
    if format not in REPORT_FORMATS:
        raise ValueError(f"Invalid format: {format}")

    output_path.parent.mkdir(parents=True, exist_ok=True)
    written = []

    if format in {"json", "both"}:
        json_path = output_path.with_suffix(".json")
        generate_json_report(jobs, json_path, analyses)
        written.append(json_path)

    if format in {"markdown", "both"}:
        md_path = output_path.with_suffix(".md")
        generate_markdown_report(jobs, md_path, analyses)
        written.append(md_path)

    logger.info("Report generation complete")
    return written
