"""Summary: Tests for CLI command handling.

Importance: Confirms terminal workflows reach the same services as the API.
Alternatives: Exercise the CLI through subprocess calls.
"""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from campuslink.app import build_context
from campuslink.cli import _run, build_parser
from campuslink.config import AppConfig


def _config(tmp_path: Path) -> AppConfig:
    return AppConfig(
        db_path=str(tmp_path / "cli.db"),
        api_host="127.0.0.1",
        api_port=8000,
        api_key="",
        log_level="INFO",
        badge_cap=9,
        default_user_name="Local Student",
        default_user_email="student@campuslink.local",
    )


def test_message_employer_and_list(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    """Summary: Verify a CLI inquiry shows up in the conversation listing.

    Importance: Covers the lazy inquiry path from the terminal.
    Alternatives: Only test the parser.
    """

    context = build_context(_config(tmp_path))
    parser = build_parser()
    employer = context.store.get_user(
        context.services_for_user(None).directory.create_user(
            "Erin Employer", "erin@acme.com", "employer"
        )
    )
    student_id = context.services_for_user(None).directory.create_user("Sam", "sam@campus.edu")

    def run(*argv: str, user_id: int) -> str:
        args = parser.parse_args(["--as-user", str(user_id), *argv])
        asyncio.run(_run(args, context.services_for_user(args.as_user)))
        return capsys.readouterr().out

    assert "Posted job 1" in run("add-job", "Campus Barista", user_id=employer.id)
    assert "on application 1" in run("message-employer", "1", "Is this remote?", user_id=student_id)
    listing = run("conversations", user_id=student_id)
    assert "[job] Campus Barista with Erin Employer (0 unread) - Is this remote?" in listing
    assert "Unread: 1 (1)" in run("unread", user_id=employer.id)


def test_commands_require_user(tmp_path: Path) -> None:
    context = build_context(_config(tmp_path))
    args = build_parser().parse_args(["conversations"])
    with pytest.raises(ValueError):
        asyncio.run(_run(args, context.services_for_user(None)))


def test_send_requires_counterpart_for_marketplace(tmp_path: Path) -> None:
    context = build_context(_config(tmp_path))
    user_id = context.services_for_user(None).directory.create_user("Sam", "sam@campus.edu")
    args = build_parser().parse_args(
        ["--as-user", str(user_id), "send", "marketplace", "1", "hello"]
    )
    with pytest.raises(ValueError):
        asyncio.run(_run(args, context.services_for_user(user_id)))


def test_blank_text_is_rejected_before_sending(tmp_path: Path) -> None:
    """Summary: Verify whitespace-only text never reaches the store.

    Importance: The terminal follows the same empty-message rule as the API.
    Alternatives: Store the text as typed and let readers skip blank rows.
    """

    context = build_context(_config(tmp_path))
    directory = context.services_for_user(None).directory
    employer = directory.create_user("Erin Employer", "erin@acme.com", "employer")
    student = directory.create_user("Sam", "sam@campus.edu")
    job_id = directory.post_job(employer, "Campus Barista", "Acme")
    application_id = context.store.create_application(job_id, student, "inquiry")
    parser = build_parser()

    for argv in (
        ["send", "job", str(application_id), "   "],
        ["message-employer", str(job_id), "\t"],
    ):
        args = parser.parse_args(["--as-user", str(student), *argv])
        with pytest.raises(ValueError, match="empty"):
            asyncio.run(_run(args, context.services_for_user(student)))
    assert context.store.list_job_messages(application_id) == []
