"""
Command-line interface for GEDCOM import and export.

Runs the same pipeline as the web service against a local database:
parse, review duplicates, import with resolution decisions, export.
"""

from __future__ import annotations

import dataclasses
import logging
import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from familytree_import import __version__
from familytree_import.config import Settings
from familytree_import.core.errors import (
    GedcomParseError,
    ImportFailedError,
    InvalidResolutionError,
    generate_error_log_csv,
    split_issues,
)
from familytree_import.core.export import EXPORT_VERSIONS, build_gedcom_file, export_filename
from familytree_import.core.gedcom import GedcomParser, extract_statistics
from familytree_import.core.models import ParsedGedcom, ResolutionDecision, Resolution
from familytree_import.core.validation import apply_orphan_check
from familytree_import.importer import GedcomImporter
from familytree_import.matching import find_duplicates
from familytree_import.preview import PreviewStore
from familytree_import.storage import FamilyTreeDatabase, UploadStorage

console = Console()
err_console = Console(stderr=True)

MAX_LISTED_ISSUES = 20


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, rich_tracebacks=True)],
        force=True,
    )


def load_gedcom(file: str) -> ParsedGedcom:
    """Parse and clean a GEDCOM file, exiting with a message if it can't be read."""
    try:
        parsed = GedcomParser().load(file)
    except GedcomParseError as e:
        console.print(f"[red]Error loading GEDCOM: {e}[/red]")
        sys.exit(1)
    parsed, _ = apply_orphan_check(parsed)
    return parsed


def open_database(settings: Settings) -> FamilyTreeDatabase:
    return FamilyTreeDatabase(settings.database_path).connect()


def print_issues(parsed: ParsedGedcom) -> None:
    errors, warnings = split_issues(parsed.errors)

    for label, style, issues in (("Errors", "red", errors), ("Warnings", "yellow", warnings)):
        if not issues:
            continue
        console.print(f"\n[{style}]{label} ({len(issues)}):[/{style}]")
        for issue in issues[:MAX_LISTED_ISSUES]:
            location = f"line {issue.line}" if issue.line else "-"
            console.print(f"  {location}: {issue.message}")
        if len(issues) > MAX_LISTED_ISSUES:
            console.print(f"  ... and {len(issues) - MAX_LISTED_ISSUES} more")


@click.group()
@click.version_option(version=__version__, prog_name="familytree-import")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.option("--config", "config_path", type=click.Path(exists=True), help="YAML settings file")
@click.option("--database", "-d", help="SQLite database path (overrides settings)")
@click.pass_context
def cli(ctx, verbose: bool, config_path: Optional[str], database: Optional[str]):
    """
    Import GEDCOM genealogy files into a family tree.

    Settings come from --config, or from FAMILYTREE_* environment variables.
    """
    configure_logging(verbose)

    settings = Settings.from_yaml(config_path) if config_path else Settings.from_env()
    if database:
        settings = dataclasses.replace(settings, database_path=database)

    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["settings"] = settings


# =============================================================================
# GEDCOM Commands
# =============================================================================

@cli.command("parse")
@click.argument("file", type=click.Path(exists=True))
@click.option("--user-id", "-u", type=int, help="Owner whose tree is checked for duplicates")
@click.option("--duplicates/--no-duplicates", default=True, help="Check against the database")
@click.pass_context
def parse_command(ctx, file: str, user_id: Optional[int], duplicates: bool):
    """Display GEDCOM statistics, issues and likely duplicates."""
    settings: Settings = ctx.obj["settings"]
    parsed = load_gedcom(file)
    stats = extract_statistics(parsed)

    table = Table(title=f"GEDCOM: {Path(file).name}")
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")

    table.add_row("Version", str(stats["version"]))
    table.add_row("Individuals", str(stats["totalIndividuals"]))
    table.add_row("Families", str(stats["totalFamilies"]))
    if stats["dateRange"]:
        table.add_row("Earliest date", stats["dateRange"]["earliest"])
        table.add_row("Latest date", stats["dateRange"]["latest"])
    table.add_row("Issues", str(len(parsed.errors)))

    console.print(table)
    print_issues(parsed)

    if not duplicates:
        return

    database = open_database(settings)
    try:
        owner = user_id if user_id is not None else settings.default_user_id
        candidates = find_duplicates(
            parsed.individuals,
            database.list_people(owner),
            threshold=settings.duplicate_threshold,
        )
    finally:
        database.close()

    if not candidates:
        console.print("\n[green]No likely duplicates in the family tree[/green]")
        return

    dup_table = Table(title="Possible Duplicates")
    dup_table.add_column("GEDCOM ID", style="cyan")
    dup_table.add_column("Name")
    dup_table.add_column("Existing ID", justify="right")
    dup_table.add_column("Existing Name")
    dup_table.add_column("Confidence", justify="right")

    for candidate in candidates:
        dup_table.add_row(
            str(candidate.gedcom_person.id),
            candidate.gedcom_person.name,
            str(candidate.existing_person.id),
            candidate.existing_person.name,
            f"{candidate.confidence}%",
        )

    console.print()
    console.print(dup_table)


def _parse_merge(values: tuple[str, ...]) -> list[ResolutionDecision]:
    decisions = []
    for value in values:
        gedcom_id, sep, person_id = value.partition("=")
        if not sep or not person_id.strip().isdigit():
            raise click.BadParameter(
                f"Expected GEDCOM_ID=PERSON_ID, got {value!r}", param_hint="--merge"
            )
        decisions.append(ResolutionDecision(
            gedcom_id=gedcom_id.strip(),
            resolution=Resolution.MERGE,
            existing_person_id=int(person_id),
        ))
    return decisions


@cli.command("import")
@click.argument("file", type=click.Path(exists=True))
@click.option("--user-id", "-u", type=int, help="Owner of the imported people")
@click.option("--skip", "-s", multiple=True, help="GEDCOM ID to leave out (repeatable)")
@click.option("--merge", "-m", multiple=True, help="GEDCOM_ID=PERSON_ID to merge into (repeatable)")
@click.pass_context
def import_command(ctx, file: str, user_id: Optional[int], skip: tuple, merge: tuple):
    """
    Import a GEDCOM file into the family tree.

    Individuals are imported as new unless listed with --skip or --merge.
    """
    settings: Settings = ctx.obj["settings"]
    owner = user_id if user_id is not None else settings.default_user_id

    decisions = _parse_merge(merge)
    decisions.extend(
        ResolutionDecision(gedcom_id=gedcom_id, resolution=Resolution.SKIP) for gedcom_id in skip
    )

    parsed = load_gedcom(file)
    upload_id = UploadStorage.generate_upload_id(owner)

    database = open_database(settings)
    try:
        existing = database.list_people(owner)
        candidates = find_duplicates(
            parsed.individuals, existing, threshold=settings.duplicate_threshold,
        )

        previews = PreviewStore()
        session = previews.store_preview_data(
            upload_id, owner, parsed, candidates, existing_people=existing,
        )
        previews.save_resolution_decisions(upload_id, owner, decisions)

        undecided = {
            str(c.gedcom_person.id) for c in candidates
        } - {d.gedcom_id for d in decisions}
        if undecided:
            console.print(
                f"[yellow]{len(undecided)} possible duplicates will be imported as new "
                f"(use --merge or --skip to change this)[/yellow]"
            )

        result = GedcomImporter(database).run(session, session.resolution_decisions, owner)
    except InvalidResolutionError as e:
        console.print(f"[red]Invalid decision: {e}[/red]")
        sys.exit(2)
    except ImportFailedError as e:
        console.print(Panel(
            f"{e}\n\nCode: {e.code.value}\nRetry: {'yes' if e.can_retry else 'no'}",
            title="Import failed",
            border_style="red",
        ))
        sys.exit(1)
    finally:
        database.close()

    table = Table(title="Import Complete")
    table.add_column("Metric", style="bold")
    table.add_column("Count", justify="right")
    table.add_row("People created", str(result.persons))
    table.add_row("People merged", str(result.updated))
    table.add_row("Relationships", str(result.relationships))
    table.add_row("Warnings", str(len(parsed.errors)))
    console.print(table)


@cli.command("export")
@click.option("--output", "-o", type=click.Path(), help="Output file (default familytree_YYYYMMDD.ged)")
@click.option("--format", "version", type=click.Choice(EXPORT_VERSIONS), help="GEDCOM version")
@click.option("--user-id", "-u", type=int, help="Owner whose tree is exported")
@click.pass_context
def export_command(ctx, output: Optional[str], version: Optional[str], user_id: Optional[int]):
    """Export the family tree as a GEDCOM file."""
    settings: Settings = ctx.obj["settings"]
    owner = user_id if user_id is not None else settings.default_user_id

    database = open_database(settings)
    try:
        content = build_gedcom_file(
            database.list_people(owner),
            database.list_relationships(owner),
            version=version or settings.export_version,
            submitter=settings.submitter_name,
        )
    finally:
        database.close()

    path = Path(output or export_filename())
    path.write_text(content, encoding="utf-8")
    console.print(f"[green]GEDCOM saved to {path}[/green]")


@cli.command("errors")
@click.argument("file", type=click.Path(exists=True))
@click.option("--output", "-o", type=click.Path(), help="Write CSV here instead of stdout")
def errors_command(file: str, output: Optional[str]):
    """Write the parse issues of a GEDCOM file as a CSV error log."""
    parsed = load_gedcom(file)
    content = generate_error_log_csv(parsed.errors)

    if output:
        Path(output).write_text(content, encoding="utf-8", newline="")
        console.print(f"[green]Error log saved to {output} ({len(parsed.errors)} issues)[/green]")
    else:
        click.echo(content, nl=False)


@cli.command("serve")
@click.option("--host", default="127.0.0.1", help="Bind address")
@click.option("--port", default=8000, type=int, help="Port")
@click.pass_context
def serve_command(ctx, host: str, port: int):
    """Run the HTTP API."""
    import uvicorn

    from familytree_import.web import create_app

    uvicorn.run(create_app(ctx.obj["settings"]), host=host, port=port)


# =============================================================================
# Main Entry Point
# =============================================================================

def main():
    """Main entry point."""
    cli(obj={})


if __name__ == "__main__":
    main()
