"""td silos - knowledge concentration across linked files."""

from __future__ import annotations

import click

from td import analysis
from td.cli import TDContext, pass_ctx


@click.command("silos")
@click.option("--patterns", "patterns_only", is_flag=True, help="Only show detected patterns")
@click.option("--top", default=10, type=int, help="Authors to list")
@pass_ctx
def silos(ctx: TDContext, patterns_only: bool, top: int) -> None:
    """Report files and authors where knowledge sits with one session."""
    ctx.ensure_initialized()
    assert ctx.store is not None

    report = analysis.analyze(ctx.store, ctx.find_root())
    if ctx.json_output:
        ctx.output(report.to_dict())
        return

    if not patterns_only:
        click.echo(f"Tracked files:   {len(report.files)}")
        click.echo(f"Critical files:  {len(report.critical_files)} (single author)")
        click.echo(f"Issue coverage:  {report.issue_coverage} issue(s) with linked files")
        if report.total_code_files:
            click.echo(f"Explored:        {report.explored_ratio * 100:.1f}% "
                       f"of {report.total_code_files} code files")
        click.echo(f"Risk score:      {report.risk_score:.2f}")
        if report.authors:
            click.echo("\nAuthors:")
            for ac in report.authors[:top]:
                click.echo(f"  {ac.author:<16} {ac.file_count:>4} files "
                           f"({ac.ratio_of_all * 100:.0f}%), sole on {ac.critical_risk}")

    if report.patterns:
        click.echo("\nPatterns:")
        for p in report.patterns:
            click.echo(f"  [{p.severity}] {p.pattern}: {p.reason}")
    elif patterns_only:
        click.echo("No patterns detected.")
