"""Command line interface.

Commands:
- list: one page of cases as a table
- show: one case rendered as Markdown
- export: bulk export of cases by number or by filter
- search: knowledge base and case search
- accounts: accounts seen on accessible cases
"""

import asyncio
import logging
import os
import signal
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Tuple

import click
from dotenv import load_dotenv
from rich import box
from rich.console import Console
from rich.markdown import Markdown
from rich.progress import BarColumn, MofNCompleteColumn, Progress, TextColumn, TimeElapsedColumn
from rich.table import Table

from casedesk import __version__
from casedesk.auth.token_provider import TokenProvider
from casedesk.clients.case_service_client import CaseServiceClient
from casedesk.config.settings import Settings, load_settings
from casedesk.exceptions import CaseDeskError
from casedesk.export.engine import CaseExporter
from casedesk.export.formatter import MarkdownFormatter, format_time
from casedesk.export.progress import CancellationToken, ProgressChannel
from casedesk.models.case import Account, CaseFilter, SearchResult
from casedesk.models.export import ExportResult

logger = logging.getLogger(__name__)

console = Console()

SEARCH_SECTIONS = (
    ("case", "Cases"),
    ("solution", "Solutions"),
    ("article", "Articles"),
)


def _configure_logging(debug: bool, log_file: Optional[str]) -> None:
    handlers = [logging.FileHandler(log_file)] if log_file else None
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=handlers,
        force=True,
    )


def _client(ctx: click.Context) -> CaseServiceClient:
    settings: Settings = ctx.obj["settings"]
    return CaseServiceClient(
        base_url=settings.api.base_url,
        search_url=settings.api.search_url,
        timeout=settings.api.timeout,
        token_provider=TokenProvider(token=ctx.obj["token"]),
        closed_statuses=settings.vocabulary.closed_statuses,
    )


def _build_filter(
    settings: Settings,
    preset: Optional[str],
    status: Tuple[str, ...],
    severity: Tuple[str, ...],
    product: Tuple[str, ...],
    account: Tuple[str, ...],
    keyword: Optional[str],
    include_closed: bool,
    since: Optional[datetime],
    until: Optional[datetime],
) -> CaseFilter:
    case_filter = CaseFilter()
    if preset:
        if preset not in settings.presets:
            raise click.BadParameter(f"unknown preset {preset!r}", param_hint="--preset")
        case_filter = settings.presets[preset].to_filter()

    updates = {
        "status": list(status) or case_filter.status,
        "severity": list(severity) or case_filter.severity,
        "products": list(product) or case_filter.products,
        "accounts": list(account) or case_filter.accounts,
        "keyword": keyword or case_filter.keyword,
        "include_closed": include_closed or case_filter.include_closed,
        "start_date": since,
        "end_date": until,
    }
    return settings.with_defaults(case_filter.model_copy(update=updates))


def filter_options(func):
    """Options shared by every command that selects cases by filter."""
    options = [
        click.option("--preset", "-p", help="Named filter preset from the config file"),
        click.option("--status", "-s", multiple=True, help="Status or alias (repeatable)"),
        click.option("--severity", multiple=True, help="Severity, e.g. 1 or urgent (repeatable)"),
        click.option("--product", multiple=True, help="Product name (repeatable)"),
        click.option("--account", "-a", multiple=True, help="Account number (repeatable)"),
        click.option("--keyword", "-k", help="Free text search"),
        click.option("--include-closed", is_flag=True, help="Include closed cases"),
        click.option("--since", type=click.DateTime(), help="Created on or after"),
        click.option("--until", type=click.DateTime(), help="Created on or before"),
    ]
    for option in reversed(options):
        func = option(func)
    return func


@click.group()
@click.version_option(version=__version__, prog_name="casedesk")
@click.option("--config", "config_path", type=click.Path(dir_okay=False, path_type=Path),
              help="Config file (default: ~/.config/casedesk/config.yaml)")
@click.option("--token", envvar="CASEDESK_TOKEN", help="API bearer token [env: CASEDESK_TOKEN]")
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.option("--log-file", type=click.Path(dir_okay=False), help="Write logs to a file")
@click.pass_context
def main(
    ctx: click.Context,
    config_path: Optional[Path],
    token: Optional[str],
    debug: bool,
    log_file: Optional[str],
) -> None:
    """casedesk - browse and export support cases."""
    _configure_logging(debug, log_file)

    env_file = Path.cwd() / ".env"
    if env_file.exists():
        logger.debug(f"Loading environment from {env_file}")
        load_dotenv(env_file, override=False)
        token = token or os.getenv("CASEDESK_TOKEN")

    try:
        settings = load_settings(config_path)
    except CaseDeskError as e:
        raise click.ClickException(str(e))
    ctx.obj = {"settings": settings, "token": token}


@main.command("list")
@filter_options
@click.option("--limit", "-l", default=None, type=int, help="Rows to show (default: page size)")
@click.option("--offset", default=0, type=int, help="Index of the first row")
@click.pass_context
def list_cases(
    ctx: click.Context,
    preset, status, severity, product, account, keyword, include_closed, since, until,
    limit: Optional[int],
    offset: int,
) -> None:
    """List cases, newest-modified first."""
    settings: Settings = ctx.obj["settings"]
    case_filter = _build_filter(
        settings, preset, status, severity, product, account, keyword, include_closed, since, until
    )

    async def _list():
        client = _client(ctx)
        return await client.list_cases(case_filter, offset, limit or settings.ui.page_size)

    try:
        page = asyncio.run(_list())
    except CaseDeskError as e:
        raise click.ClickException(str(e))

    if not page.items:
        console.print("[dim]No cases match.[/dim]")
        return

    table = Table(
        title=f"Cases {page.offset + 1}-{page.offset + len(page.items)} of {page.total_count}",
        box=box.ROUNDED,
    )
    table.add_column("Case", style="cyan")
    table.add_column("Severity")
    table.add_column("Status")
    table.add_column("Product")
    table.add_column("Summary")
    table.add_column("Updated", style="dim")
    for case in page.items:
        table.add_row(
            case.case_number,
            case.severity,
            case.status,
            case.product,
            case.summary,
            format_time(case.last_modified),
        )
    console.print(table)


@main.command("show")
@click.argument("case_number")
@click.option("--raw", is_flag=True, help="Print Markdown source instead of rendering it")
@click.pass_context
def show_case(ctx: click.Context, case_number: str, raw: bool) -> None:
    """Show one case with its conversation."""

    async def _show():
        client = _client(ctx)
        return await client.get_case_bundle(case_number)

    try:
        bundle = asyncio.run(_show())
    except CaseDeskError as e:
        raise click.ClickException(str(e))

    document = MarkdownFormatter().format_case(bundle)
    if raw:
        click.echo(document)
    else:
        console.print(Markdown(document))
    if bundle.is_partial:
        console.print("[yellow]Some case data could not be loaded, see the notes above.[/yellow]")


@main.command("export")
@click.argument("case_numbers", nargs=-1)
@filter_options
@click.option("--output-dir", "-o", type=click.Path(file_okay=False, path_type=Path),
              help="Output directory (default from config: ./exports)")
@click.option("--output-file", type=click.Path(dir_okay=False, path_type=Path),
              help="Combined document path (with --combined)")
@click.option("--combined", is_flag=True, help="Write all cases into one document")
@click.option("--attachments", is_flag=True, help="Download attachments")
@click.option("--concurrency", "-j", type=int, default=None, help="Cases exported in parallel")
@click.option("--template", type=click.Path(exists=True, dir_okay=False, path_type=Path),
              help="Custom document template")
@click.pass_context
def export_cases(
    ctx: click.Context,
    case_numbers: Tuple[str, ...],
    preset, status, severity, product, account, keyword, include_closed, since, until,
    output_dir: Optional[Path],
    output_file: Optional[Path],
    combined: bool,
    attachments: bool,
    concurrency: Optional[int],
    template: Optional[Path],
) -> None:
    """Export cases to Markdown.

    Pass case numbers to export exactly those cases, or filter options to
    export every matching case.
    """
    settings: Settings = ctx.obj["settings"]
    options = settings.export_options(
        output_dir=output_dir,
        output_file=output_file,
        combined=combined,
        include_attachments=attachments,
        concurrency=concurrency,
        template_path=template,
    )
    case_filter = None
    if not case_numbers:
        case_filter = _build_filter(
            settings, preset, status, severity, product, account, keyword,
            include_closed, since, until,
        )

    async def _export() -> ExportResult:
        exporter = CaseExporter(_client(ctx), options=options)
        channel = ProgressChannel(options.progress_buffer)
        token = CancellationToken()
        try:
            asyncio.get_running_loop().add_signal_handler(signal.SIGINT, token.cancel, "interrupted")
        except NotImplementedError:
            logger.debug("Signal handlers unavailable, Ctrl-C aborts the export")

        if case_numbers:
            run = exporter.export_cases(case_numbers, progress=channel, cancel_token=token)
        else:
            run = exporter.export_with_filter(case_filter, progress=channel, cancel_token=token)
        task = asyncio.create_task(run)

        with Progress(
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            TimeElapsedColumn(),
            console=console,
            transient=True,
        ) as progress:
            bar = progress.add_task("Exporting", total=None)
            async for event in channel:
                progress.update(
                    bar,
                    total=event.total_tasks,
                    completed=event.completed_tasks,
                    description=f"{event.current_task} {event.current_step}".strip(),
                )
        return await task

    try:
        result = asyncio.run(_export())
    except CaseDeskError as e:
        raise click.ClickException(str(e))

    for failure in result.failures:
        console.print(f"[red]case {failure.case_number}: {failure.error}[/red]")
    if result.combined_path:
        console.print(f"Combined document: {result.combined_path}")
    console.print(result.summary())

    if result.total and not result.succeeded:
        ctx.exit(1)


@main.command("search")
@click.argument("query", nargs=-1, required=True)
@click.option("--limit", "-n", default=10, type=int, help="Maximum results per source")
@click.option("--no-cases", is_flag=True, help="Search solutions and articles only")
@click.pass_context
def search(ctx: click.Context, query: Tuple[str, ...], limit: int, no_cases: bool) -> None:
    """Search solutions, articles and cases."""
    text = " ".join(query)

    async def _search() -> List[SearchResult]:
        client = _client(ctx)
        results = await client.search_knowledge_base(text, limit)
        if not no_cases:
            results += await client.search_cases(text, limit)
        return results

    try:
        results = asyncio.run(_search())
    except CaseDeskError as e:
        raise click.ClickException(f"search failed: {e}")

    if not results:
        console.print("[dim]No results found.[/dim]")
        return

    console.print(f"Found {len(results)} results for '{text}'")
    for kind, title in SEARCH_SECTIONS:
        hits = [result for result in results if result.type == kind]
        if not hits:
            continue
        table = Table(title=title, box=box.ROUNDED)
        table.add_column("ID", style="cyan", no_wrap=True)
        table.add_column("Title", overflow="ellipsis")
        for hit in hits:
            table.add_row(hit.id, hit.title)
        console.print(table)


@main.command("accounts")
@click.pass_context
def list_accounts(ctx: click.Context) -> None:
    """List the accounts of every case you can see."""

    async def _accounts() -> List[Account]:
        client = _client(ctx)
        return await client.list_accounts(ctx.obj["settings"].ui.page_size)

    try:
        with console.status("Fetching accounts from cases..."):
            accounts = asyncio.run(_accounts())
    except CaseDeskError as e:
        raise click.ClickException(str(e))

    if not accounts:
        console.print("[dim]No accounts found in accessible cases.[/dim]")
        return

    table = Table(box=box.ROUNDED)
    table.add_column("Account number", style="cyan", no_wrap=True)
    table.add_column("Account name")
    for account in accounts:
        table.add_row(account.number, account.name)
    console.print(table)
    console.print(f"Found {len(accounts)} account(s)")
    console.print("[dim]List an account's cases with: casedesk list --account NUMBER[/dim]")


if __name__ == "__main__":
    main()
