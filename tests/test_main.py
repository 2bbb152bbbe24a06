"""Tests for main entry point module."""

import json
import os
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from capturedesk.capture.models import BatchPublishResult, PublishedInfo, SkippedCapture
from capturedesk.main import create_argument_parser, main, print_publish_result
from capturedesk.newsletter.mailer import SendReport


@pytest.fixture(autouse=True)
def _quiet_logging():
    """main() configures the root logger; keep that out of other tests."""
    with patch("capturedesk.main.setup_logging"):
        yield


class TestCLIArguments:
    """Test command-line argument parsing."""

    def test_serve_port(self) -> None:
        args = create_argument_parser().parse_args(["serve", "--port", "9000"])
        assert args.command == "serve"
        assert args.port == 9000

    def test_serve_port_default(self) -> None:
        args = create_argument_parser().parse_args(["serve"])
        assert args.port is None

    def test_publish_single(self) -> None:
        args = create_argument_parser().parse_args(["publish", "--id", "abc"])
        assert args.capture_id == "abc"

    def test_newsletter_defaults(self) -> None:
        args = create_argument_parser().parse_args(["newsletter", "preview"])
        assert args.type == "daily"
        assert args.date is None
        assert args.output_dir == "newsletter-preview"

    def test_newsletter_send_confirm(self) -> None:
        args = create_argument_parser().parse_args(
            ["newsletter", "send", "--type", "weekly", "--confirm"]
        )
        assert args.type == "weekly"
        assert args.confirm is True

    def test_invalid_type_rejected(self) -> None:
        with pytest.raises(SystemExit):
            create_argument_parser().parse_args(["newsletter", "preview", "--type", "monthly"])

    def test_command_required(self) -> None:
        with pytest.raises(SystemExit):
            create_argument_parser().parse_args([])

    def test_verbose_flag_short(self) -> None:
        args = create_argument_parser().parse_args(["-v", "reconcile"])
        assert args.verbose is True


class TestPrintPublishResult:
    def test_nothing_to_publish(self, capsys) -> None:
        print_publish_result(None)
        assert "No items to publish" in capsys.readouterr().out

    def test_prints_summary(self, capsys) -> None:
        result = BatchPublishResult(
            commit_id="abc123",
            files_changed=1,
            published_ids=["a"],
            per_item_info=[
                PublishedInfo(id="a", slug="s", collection="til", path="src/content/til/s.md")
            ],
            skipped=[SkippedCapture(id="b", reason="Project not found: x")],
        )
        print_publish_result(result)
        out = capsys.readouterr().out
        assert "Commit:    abc123" in out
        assert "Published: 1" in out
        assert "b: Project not found: x" in out


class TestMain:
    """Tests for main entry point."""

    def test_configuration_error(self, capsys) -> None:
        with patch.dict(os.environ, {"LOG_LEVEL": "LOUD"}):
            exit_code = main(["reconcile"])
        assert exit_code == 1
        assert "Configuration error" in capsys.readouterr().err

    def test_publish_without_github(self, config, capsys) -> None:
        config.github_token = None
        with patch("capturedesk.main.get_config", return_value=config):
            exit_code = main(["publish"])
        assert exit_code == 1
        assert "GITHUB_TOKEN" in capsys.readouterr().err

    def test_send_requires_confirm(self, config, capsys) -> None:
        with patch("capturedesk.main.get_config", return_value=config):
            with patch("capturedesk.main.send_newsletter") as mock_send:
                exit_code = main(["newsletter", "send"])
        assert exit_code == 1
        mock_send.assert_not_called()
        assert "--confirm" in capsys.readouterr().err

    def test_send_reports_failures(self, config) -> None:
        report = SendReport(contacts_scanned=2, eligible=2, sent=1, failed=1)
        with patch("capturedesk.main.get_config", return_value=config):
            with patch(
                "capturedesk.main.send_newsletter", new=AsyncMock(return_value=report)
            ):
                exit_code = main(
                    ["newsletter", "send", "--date", "2024-03-10", "--confirm"]
                )
        assert exit_code == 1

    def test_preview_writes_files(self, config, tmp_path: Path, capsys) -> None:
        til = config.content_root / "til" / "a.md"
        til.parent.mkdir(parents=True)
        til.write_text(
            '---\ntitle: "Tiny"\ndate: "2024-03-10T10:00:00Z"\n---\n\nBody.\n',
            encoding="utf-8",
        )
        out = tmp_path / "preview"

        with patch("capturedesk.main.get_config", return_value=config):
            exit_code = main(
                ["newsletter", "preview", "--date", "2024-03-10", "--output-dir", str(out)]
            )

        assert exit_code == 0
        summary = json.loads(
            (out / "daily-2024-03-10..2024-03-10.summary.json").read_text()
        )
        assert summary["variants"]["all"]["count"] == 1
        assert summary["variants"]["projects"]["count"] == 0
        assert "Subject: [Daily] Field Notes" in capsys.readouterr().out

    def test_invalid_date(self, config, tmp_path: Path, capsys) -> None:
        with patch("capturedesk.main.get_config", return_value=config):
            exit_code = main(
                ["newsletter", "preview", "--date", "yesterday", "--output-dir", str(tmp_path)]
            )
        assert exit_code == 1
        assert "Error:" in capsys.readouterr().err
