"""Tests for the edirouter CLI commands."""

from datetime import UTC, datetime, timedelta
from unittest.mock import patch

import click.testing
import pytest

from edirouter.cli import cli
from edirouter.ingest.audit import ProcessedFileAuditLog
from edirouter.schemas.ingest import FileProcessedEvent, ProcessingState
from edirouter.schemas.outcome import ErrorKind
from edirouter.schemas.transfer import Protocol, RemoteFileInfo, UploadResult
from edirouter.transfer.exceptions import TransferConnectionError


@pytest.fixture
def runner():
    return click.testing.CliRunner()


@pytest.fixture
def audit_path(tmp_path):
    path = str(tmp_path / "audit.jsonl")
    with patch("edirouter.cli.AUDIT_LOG_PATH", path):
        yield path


class TestHelp:
    def test_lists_commands(self, runner):
        result = runner.invoke(cli, ["--help"])
        assert result.exit_code == 0
        for command in ("watch", "parse", "upload", "ls", "status"):
            assert command in result.output

    def test_watch_options(self, runner):
        result = runner.invoke(cli, ["watch", "--help"])
        assert result.exit_code == 0
        assert "--base-dir" in result.output
        assert "--once" in result.output
        assert "--polling" in result.output


# ------------------------------------------------------------------
# edirouter watch
# ------------------------------------------------------------------


class TestWatch:
    def test_once_processes_files(self, runner, tmp_path, audit_path, sample_850):
        base = tmp_path / "edi"
        (base / "incoming").mkdir(parents=True)
        (base / "incoming" / "good.edi").write_text(sample_850)
        (base / "incoming" / "bad.edi").write_text("garbage")

        result = runner.invoke(cli, ["watch", "--once", "--base-dir", str(base)])

        assert result.exit_code == 0, result.output
        assert "Files: 2, Archived: 1, Errors: 1" in result.output
        assert (base / "archive" / "good.edi").exists()
        entries = ProcessedFileAuditLog(audit_path).read_entries()
        assert len(entries) == 2

    def test_once_empty_dir(self, runner, tmp_path, audit_path):
        result = runner.invoke(cli, ["watch", "--once", "--base-dir", str(tmp_path / "edi")])

        assert result.exit_code == 0, result.output
        assert "Files: 0" in result.output
        assert (tmp_path / "edi" / "errors").is_dir()

    def test_blank_base_dir(self, runner, audit_path):
        result = runner.invoke(cli, ["watch", "--once", "--base-dir", ""])
        assert result.exit_code == 1
        assert "base-dir" in result.output

    def test_setup_failure(self, runner, tmp_path, audit_path):
        blocker = tmp_path / "edi"
        blocker.write_text("not a directory")

        result = runner.invoke(cli, ["watch", "--once", "--base-dir", str(blocker)])

        assert result.exit_code == 1
        assert "Error:" in result.output

    def test_continuous_mode_stops_on_interrupt(self, runner, tmp_path, audit_path):
        with (
            patch("edirouter.ingest.watcher.DirectoryWatcher.start") as mock_start,
            patch("edirouter.ingest.watcher.DirectoryWatcher.is_running", return_value=True),
            patch("edirouter.ingest.watcher.DirectoryWatcher.stop") as mock_stop,
            patch("edirouter.cli.time.sleep", side_effect=KeyboardInterrupt),
        ):
            result = runner.invoke(cli, ["watch", "--base-dir", str(tmp_path / "edi")])

        assert result.exit_code == 0, result.output
        mock_start.assert_called_once()
        mock_stop.assert_called_once()
        assert "Stopped. Files processed: 0" in result.output


# ------------------------------------------------------------------
# edirouter parse
# ------------------------------------------------------------------


class TestParse:
    def test_valid_file(self, runner, tmp_path, sample_850):
        f = tmp_path / "850.edi"
        f.write_text(sample_850)

        result = runner.invoke(cli, ["parse", str(f)])

        assert result.exit_code == 0, result.output
        assert "Sender:    SENDERID" in result.output
        assert "Receiver:  RECEIVERID" in result.output
        assert "GS PO #1" in result.output
        assert "ST 850 #0001" in result.output
        assert "ST 850 #0002" in result.output

    def test_invalid_file(self, runner, tmp_path):
        f = tmp_path / "bad.edi"
        f.write_text("garbage")

        result = runner.invoke(cli, ["parse", str(f)])

        assert result.exit_code == 1
        assert "No ISA segment found" in result.output

    def test_missing_file(self, runner, tmp_path):
        result = runner.invoke(cli, ["parse", str(tmp_path / "missing.edi")])
        assert result.exit_code != 0


# ------------------------------------------------------------------
# edirouter upload / ls
# ------------------------------------------------------------------


def _upload_result(success: bool = True) -> UploadResult:
    if success:
        return UploadResult(
            success=True, protocol="SFTP", host="h", remote_path="/out/850.edi", bytes=70, duration_ms=12
        )
    return UploadResult(
        success=False,
        protocol="SFTP",
        host="h",
        remote_path="/out/850.edi",
        message="Authentication failed",
        error_kind=ErrorKind.AUTHENTICATION,
    )


class TestUpload:
    def test_success(self, runner, tmp_path):
        f = tmp_path / "850.edi"
        f.write_text("x")
        with patch("edirouter.transfer.client.TransferClient") as mock_cls:
            mock_cls.return_value.upload.return_value = _upload_result()
            result = runner.invoke(
                cli,
                [
                    "upload", str(f),
                    "--protocol", "sftp", "--host", "h",
                    "--directory", "/out", "--trust-unknown", "--no-overwrite",
                ],
                env={"EDIROUTER_TRANSFER_PASSWORD": "secret"},
            )

        assert result.exit_code == 0, result.output
        assert "Success" in result.output
        assert "/out/850.edi" in result.output
        local, target = mock_cls.return_value.upload.call_args[0]
        assert local == f
        assert target.protocol == Protocol.SFTP
        assert target.password == "secret"
        assert target.remote_directory == "/out"
        assert target.overwrite is False
        assert target.create_directories is True
        assert target.sftp_trust_unknown_host_keys is True

    def test_failure_exits_nonzero(self, runner, tmp_path):
        f = tmp_path / "850.edi"
        f.write_text("x")
        with patch("edirouter.transfer.client.TransferClient") as mock_cls:
            mock_cls.return_value.upload.return_value = _upload_result(success=False)
            result = runner.invoke(cli, ["upload", str(f), "--protocol", "SFTP", "--host", "h"])

        assert result.exit_code == 1
        assert "Failed" in result.output

    def test_protocol_required(self, runner, tmp_path):
        f = tmp_path / "850.edi"
        f.write_text("x")
        result = runner.invoke(cli, ["upload", str(f), "--host", "h"])
        assert result.exit_code != 0
        assert "--protocol" in result.output


class TestList:
    def test_table(self, runner):
        files = [
            RemoteFileInfo(path="/out/sub", directory=True),
            RemoteFileInfo(
                path="/out/850.edi", size_bytes=120, modified=datetime(2025, 1, 1, 12, 0, tzinfo=UTC)
            ),
        ]
        with patch("edirouter.transfer.client.TransferClient") as mock_cls:
            mock_cls.return_value.list.return_value = files
            result = runner.invoke(
                cli, ["ls", "--protocol", "FTP", "--host", "h", "-r", "--glob", "*.edi", "--include-dirs"]
            )

        assert result.exit_code == 0, result.output
        assert "DIR" in result.output
        assert "/out/850.edi" in result.output
        assert "2025-01-01 12:00:00" in result.output
        assert "Total: 2 items" in result.output
        _, options = mock_cls.return_value.list.call_args[0]
        assert options.recursive is True
        assert options.glob == "*.edi"
        assert options.include_directories is True

    def test_empty(self, runner):
        with patch("edirouter.transfer.client.TransferClient") as mock_cls:
            mock_cls.return_value.list.return_value = []
            result = runner.invoke(cli, ["ls", "--protocol", "FTP", "--host", "h"])
        assert result.exit_code == 0
        assert "No files found." in result.output

    def test_failure(self, runner):
        with patch("edirouter.transfer.client.TransferClient") as mock_cls:
            mock_cls.return_value.list.side_effect = TransferConnectionError("refused", "h", 21)
            result = runner.invoke(cli, ["ls", "--protocol", "FTP", "--host", "h"])
        assert result.exit_code == 1
        assert "refused" in result.output


# ------------------------------------------------------------------
# edirouter status
# ------------------------------------------------------------------


class TestStatus:
    def test_summary(self, runner, audit_path):
        audit = ProcessedFileAuditLog(audit_path)
        now = datetime.now(UTC)
        for i, success in enumerate([True, True, False]):
            audit.log(
                FileProcessedEvent(
                    timestamp=now,
                    file_name=f"{i}.edi",
                    success=success,
                    total_processed=i + 1,
                    final_state=ProcessingState.ARCHIVED if success else ProcessingState.ERRORED,
                    error_kind=None if success else ErrorKind.PARSE,
                    error_message="" if success else "No ISA segment found",
                )
            )
        audit.log(
            FileProcessedEvent(
                timestamp=now - timedelta(days=3),
                file_name="old.edi",
                success=True,
                total_processed=4,
                final_state=ProcessingState.ARCHIVED,
            )
        )

        result = runner.invoke(cli, ["status"])

        assert result.exit_code == 0, result.output
        assert "Processed (24h):  3" in result.output
        assert "Archived:         2" in result.output
        assert "Errors:           1" in result.output
        assert "2.edi: [parse] No ISA segment found" in result.output

    def test_empty(self, runner, audit_path):
        result = runner.invoke(cli, ["status"])
        assert result.exit_code == 0
        assert "Processed (24h):  0" in result.output
