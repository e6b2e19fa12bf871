"""Plain-text migration report."""

from pathlib import Path
from typing import Any, List, Union

RULE = '=' * 65
THIN_RULE = '-' * 65


def render_report(summary: Any) -> str:
    """Render a migration summary as text.

    Args:
        summary: Migration summary of a finished run

    Returns:
        Report text
    """
    lines: List[str] = [
        RULE,
        'GITLAB MIGRATION REPORT'.center(65).rstrip(),
        RULE,
        f'Started:     {summary.started_at:%Y-%m-%d %H:%M:%S}',
    ]
    if summary.completed_at:
        lines.append(f'Finished:    {summary.completed_at:%Y-%m-%d %H:%M:%S}')
        lines.append(f'Duration:    {summary.completed_at - summary.started_at}')
    lines += [
        f'Source:      {summary.source_url}',
        f'Destination: {summary.destination_url}',
        f'Workspace:   {summary.workspace}',
    ]
    if summary.cancelled:
        lines.append('Run was cancelled before all work completed')

    lines += ['', 'PHASES', THIN_RULE]
    lines.append(
        f'{"Phase":<13}{"Outcome":<11}{"Attempted":>10}{"Succeeded":>10}'
        f'{"Skipped":>9}{"Failed":>8}'
    )
    for name, phase in summary.phases.items():
        counters = phase.counters
        lines.append(
            f'{name:<13}{phase.outcome.value:<11}{counters.attempted:>10}'
            f'{counters.succeeded:>10}{counters.skipped:>9}{counters.failed:>8}'
        )
        if phase.error:
            lines.append(f'  {phase.error}')

    totals = summary.totals
    lines.append(
        f'{"total":<13}{"":<11}{totals.attempted:>10}{totals.succeeded:>10}'
        f'{totals.skipped:>9}{totals.failed:>8}'
    )

    if summary.reconciliation is not None:
        counts = summary.reconciliation.counts
        lines += ['', 'PROJECT IMPORTS', THIN_RULE]
        lines.append(
            f'completed: {counts["completed"]}  pending: {counts["pending"]}  '
            f'failed: {counts["failed"]}'
        )
        for entry in summary.reconciliation.entries:
            if entry.outcome.value != 'completed':
                status = entry.import_status or 'not found'
                lines.append(f'  {entry.outcome.value:<9} {entry.path} ({status})')

    if summary.mapped:
        lines += ['', 'ID MAPPINGS', THIN_RULE]
        lines.append(
            '  '.join(f'{kind}: {count}' for kind, count in summary.mapped.items())
        )

    failures = summary.failed_results
    if failures:
        lines += ['', f'FAILURES ({len(failures)})', THIN_RULE]
        for result in failures:
            lines.append(
                f'  {result.entity_type} {result.label or result.entity_id}: '
                f'{result.error_message}'
            )

    lines.append('')
    lines.append(f'Leftover transfer files removed: {summary.swept_artifacts}')
    lines.append(f'For details see: {summary.log_file}')
    return '\n'.join(lines) + '\n'


def write_report(summary: Any, path: Union[str, Path]) -> Path:
    """Write the rendered report to ``path``."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(render_report(summary), encoding='utf-8')
    return path
