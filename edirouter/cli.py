"""CLI entry point for the EDI router.

Commands:
    edirouter watch   : sweep and watch the incoming drop folder
    edirouter parse   : show the X12 envelope of a file
    edirouter upload  : push a file to an FTP/SFTP server
    edirouter ls      : list a remote FTP/SFTP directory
    edirouter status  : summary of recently processed files
"""

import logging
import sys
import time
from pathlib import Path

import click

from edirouter.config import AUDIT_LOG_PATH, BASE_DIR, USE_POLLING, ingest_settings

logger = logging.getLogger("edirouter")


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
def cli(verbose: bool) -> None:
    """EDI router: X12 drop-folder ingest and FTP/SFTP transfer."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    # paramiko is chatty at INFO
    logging.getLogger("paramiko").setLevel(logging.WARNING)


# ------------------------------------------------------------------
# edirouter watch
# ------------------------------------------------------------------


def _echo_event(event) -> None:
    if event.success:
        click.echo(
            f"  [{event.total_processed}] {event.file_name}: {event.document_type} "
            f"{event.sender_id} -> {event.receiver_id}"
        )
    else:
        click.echo(f"  [{event.total_processed}] {event.file_name}: FAILED ({event.error_kind})")


@cli.command()
@click.option(
    "--base-dir",
    default=BASE_DIR,
    show_default=True,
    help="Directory holding incoming/, processing/, archive/ and errors/.",
)
@click.option("--once", is_flag=True, help="Process existing files and exit (no continuous watch).")
@click.option(
    "--polling/--no-polling",
    default=USE_POLLING,
    show_default=True,
    help="Use the polling observer instead of native filesystem events.",
)
def watch(base_dir: str, once: bool, polling: bool) -> None:
    """Sweep the incoming folder, then watch it for new EDI files."""
    from edirouter.ingest.audit import ProcessedFileAuditLog
    from edirouter.ingest.pipeline import IngestionPipeline, IngestSetupError
    from edirouter.ingest.watcher import DirectoryWatcher

    if not base_dir:
        click.echo("Error: --base-dir is required (or set EDIROUTER_BASE_DIR).", err=True)
        sys.exit(1)

    settings = ingest_settings(base_dir, use_polling=polling)
    logger.debug("Ingest settings: %s", settings)
    pipeline = IngestionPipeline(settings)
    audit_log = ProcessedFileAuditLog(AUDIT_LOG_PATH)
    pipeline.events.subscribe(audit_log.log)
    watcher = DirectoryWatcher(pipeline)

    try:
        if once:
            click.echo(f"Scanning {settings.incoming_path} (once mode)…")
            results = watcher.run_once()
            archived = sum(1 for r in results if r.success)
            click.echo(
                f"Done. Files: {len(results)}, Archived: {archived}, "
                f"Errors: {len(results) - archived}"
            )
            return

        click.echo(f"Watching {settings.incoming_path} for new files (Ctrl+C to stop)…")
        pipeline.events.subscribe(_echo_event)
        watcher.start()
        try:
            while watcher.is_running():
                time.sleep(1)
        except KeyboardInterrupt:
            pass
        finally:
            watcher.stop()
            click.echo(f"Stopped. Files processed: {pipeline.total_processed}")
    except IngestSetupError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)


# ------------------------------------------------------------------
# edirouter parse
# ------------------------------------------------------------------


@cli.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def parse(file: Path) -> None:
    """Print the ISA/GS/ST envelope of an EDI file."""
    from edirouter.x12.envelope import X12ParseError, parse_file

    try:
        result = parse_file(file)
    except X12ParseError as exc:
        click.echo(f"Error: {file.name} is not a valid X12 interchange: {exc}", err=True)
        sys.exit(1)

    isa = result.isa
    click.echo(f"Interchange {isa.interchange_control_number} ({isa.interchange_control_version})")
    click.echo(f"  Sender:    {isa.sender_id}")
    click.echo(f"  Receiver:  {isa.receiver_id}")
    click.echo(f"  Usage:     {isa.usage_indicator}")
    click.echo(
        f"  Delimiters: element={isa.element_separator!r} segment={isa.segment_terminator!r} "
        f"repetition={isa.repetition_separator!r} component={isa.component_separator!r}"
    )
    for group in result.functional_groups:
        gs = group.gs
        label = "(no GS)" if group.synthetic else f"GS {gs.functional_identifier_code} #{gs.group_control_number}"
        click.echo(f"  {label}")
        for ts in group.transaction_sets:
            click.echo(
                f"    ST {ts.identifier_code} #{ts.control_number} "
                f"[{ts.index_in_interchange}/{ts.index_in_group}]"
            )


# ------------------------------------------------------------------
# edirouter upload / ls
# ------------------------------------------------------------------


def _connection_options(fn):
    """Options shared by upload and ls, mirroring TransferTarget."""
    options = [
        click.option("--protocol", type=click.Choice(["FTP", "SFTP"], case_sensitive=False), required=True),
        click.option("--host", required=True),
        click.option("--port", type=int, default=-1, help="Defaults to 21 (FTP) or 22 (SFTP)."),
        click.option("--username", "-u", default="", envvar="EDIROUTER_TRANSFER_USERNAME"),
        click.option("--password", "-p", default=None, envvar="EDIROUTER_TRANSFER_PASSWORD"),
        click.option(
            "--private-key",
            type=click.Path(exists=True, dir_okay=False, path_type=Path),
            default=None,
            help="SFTP private key file.",
        ),
        click.option("--passphrase", default=None, envvar="EDIROUTER_TRANSFER_KEY_PASSPHRASE"),
        click.option("--directory", "-d", default=None, help="Remote directory."),
        click.option("--active", is_flag=True, help="FTP active mode (default passive)."),
        click.option("--fingerprint", default=None, help="Expected SFTP host key fingerprint."),
        click.option("--trust-unknown", is_flag=True, help="Accept any SFTP host key (dev only)."),
    ]
    for option in reversed(options):
        fn = option(fn)
    return fn


def _build_target(
    protocol: str,
    host: str,
    port: int,
    username: str,
    password: str | None,
    private_key: Path | None,
    passphrase: str | None,
    directory: str | None,
    active: bool,
    fingerprint: str | None,
    trust_unknown: bool,
    **extra,
):
    from edirouter.schemas.transfer import Protocol, TransferTarget

    return TransferTarget(
        protocol=Protocol(protocol.upper()),
        host=host,
        port=port,
        username=username,
        password=password,
        private_key=private_key.read_text() if private_key else None,
        private_key_passphrase=passphrase,
        remote_directory=directory,
        ftp_passive_mode=not active,
        sftp_host_key_fingerprint=fingerprint,
        sftp_trust_unknown_host_keys=trust_unknown,
        **extra,
    )


@cli.command()
@click.argument("local_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@_connection_options
@click.option("--remote-name", default=None, help="Remote file name (defaults to the local name).")
@click.option("--no-overwrite", is_flag=True, help="Fail if the remote file already exists.")
@click.option("--no-mkdirs", is_flag=True, help="Do not create missing remote directories.")
def upload(local_file: Path, remote_name: str | None, no_overwrite: bool, no_mkdirs: bool, **conn) -> None:
    """Upload LOCAL_FILE to an FTP or SFTP server."""
    from edirouter.transfer.client import TransferClient

    target = _build_target(
        **conn,
        remote_filename=remote_name,
        overwrite=not no_overwrite,
        create_directories=not no_mkdirs,
    )
    click.echo(f"Uploading {local_file.name}... ", nl=False)
    result = TransferClient().upload(local_file, target)
    if result.success:
        click.echo("✓ Success")
        click.echo(f"  Remote path: {result.remote_path}")
        click.echo(f"  Bytes: {result.bytes}")
        click.echo(f"  Duration: {result.duration_ms}ms")
    else:
        click.echo("✗ Failed")
        click.echo(f"  Error ({result.error_kind}): {result.message}", err=True)
        sys.exit(1)


@cli.command(name="ls")
@_connection_options
@click.option("--recursive", "-r", is_flag=True, help="Descend into subdirectories.")
@click.option("--glob", "-g", default=None, help='Filter names, e.g. "*.edi".')
@click.option("--include-dirs", is_flag=True, help="Report directories as well as files.")
def list_remote(recursive: bool, glob: str | None, include_dirs: bool, **conn) -> None:
    """List a remote FTP or SFTP directory."""
    from edirouter.schemas.transfer import ListOptions
    from edirouter.transfer.client import TransferClient
    from edirouter.transfer.exceptions import TransferError

    target = _build_target(**conn)
    options = ListOptions(recursive=recursive, glob=glob, include_directories=include_dirs)
    try:
        files = TransferClient().list(target, options)
    except TransferError as exc:
        click.echo(f"Failed to list directory: {exc}", err=True)
        sys.exit(1)

    if not files:
        click.echo("No files found.")
        return

    click.echo(f"{'Type':<6} {'Size':>10} {'Modified':<20} Name")
    click.echo("-" * 60)
    for f in files:
        kind = "DIR" if f.directory else "FILE"
        size = str(f.size_bytes) if f.size_bytes is not None else "-"
        modified = f.modified.strftime("%Y-%m-%d %H:%M:%S") if f.modified else "-"
        click.echo(f"{kind:<6} {size:>10} {modified:<20} {f.path}")
    click.echo(f"\nTotal: {len(files)} items")


# ------------------------------------------------------------------
# edirouter status
# ------------------------------------------------------------------


@cli.command()
@click.option("--hours", default=24, show_default=True, help="Lookback period in hours.")
def status(hours: int) -> None:
    """Quick overview of recently processed files."""
    from datetime import UTC, datetime, timedelta

    from edirouter.ingest.audit import ProcessedFileAuditLog

    since = datetime.now(UTC) - timedelta(hours=hours)
    entries = ProcessedFileAuditLog(AUDIT_LOG_PATH).read_entries(since=since)
    archived = sum(1 for e in entries if e.success)

    click.echo("EDI Router Status")
    click.echo(f"  Processed ({hours}h):  {len(entries)}")
    click.echo(f"  Archived:         {archived}")
    click.echo(f"  Errors:           {len(entries) - archived}")
    failures = [e for e in entries if not e.success][-5:]
    if failures:
        click.echo("  Recent errors:")
        for e in failures:
            click.echo(f"    {e.file_name}: [{e.error_kind}] {e.error_message}")
