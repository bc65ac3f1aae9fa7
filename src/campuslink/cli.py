"""Summary: Command-line interface for CampusLink.

Importance: Provides a local entry point for messaging workflows without a UI.
Alternatives: Build a web UI or desktop client first.
"""

from __future__ import annotations

import argparse
import asyncio
import logging

from campuslink.api import serve
from campuslink.app import AppServices, build_context, build_services
from campuslink.config import AppConfig
from campuslink.grouping import group_by_user
from campuslink.models import SCOPE_KINDS, Scope


def build_parser() -> argparse.ArgumentParser:
    """Summary: Build the CLI argument parser.

    Importance: Defines supported commands for local operation.
    Alternatives: Use a CLI framework like Typer or Click.
    """

    parser = argparse.ArgumentParser(description="CampusLink CLI")
    parser.add_argument("--as-user", type=int, default=None, help="Act as this user ID")
    subparsers = parser.add_subparsers(dest="command", required=True)

    add_user = subparsers.add_parser("add-user", help="Create a user")
    add_user.add_argument("display_name", type=str)
    add_user.add_argument("email", type=str)
    add_user.add_argument("--role", choices=["student", "employer"], default="student")

    add_job = subparsers.add_parser("add-job", help="Post a job as the current user")
    add_job.add_argument("title", type=str)
    add_job.add_argument("--company", type=str, default="")

    add_product = subparsers.add_parser("add-product", help="List an item as the current user")
    add_product.add_argument("title", type=str)
    add_product.add_argument("--price", type=float, default=0.0)

    apply = subparsers.add_parser("apply", help="Apply to a job")
    apply.add_argument("job_id", type=int)
    apply.add_argument("--cover-letter", type=str, default=None)

    subparsers.add_parser("conversations", help="List conversations")
    subparsers.add_parser("by-user", help="List conversations grouped by person")

    messages = subparsers.add_parser("messages", help="Show a conversation thread")
    messages.add_argument("kind", choices=SCOPE_KINDS)
    messages.add_argument("scope_id", type=int)
    messages.add_argument("--counterpart", type=int, default=None)

    send = subparsers.add_parser("send", help="Send into an existing conversation")
    send.add_argument("kind", choices=SCOPE_KINDS)
    send.add_argument("scope_id", type=int)
    send.add_argument("text", type=str)
    send.add_argument("--counterpart", type=int, default=None)

    message_employer = subparsers.add_parser("message-employer", help="Message about a job")
    message_employer.add_argument("job_id", type=int)
    message_employer.add_argument("text", type=str)

    message_seller = subparsers.add_parser("message-seller", help="Message about an item")
    message_seller.add_argument("product_id", type=int)
    message_seller.add_argument("text", type=str)

    subparsers.add_parser("unread", help="Show the unread badge")
    subparsers.add_parser("serve", help="Run the HTTP API")

    return parser


async def _run(args: argparse.Namespace, services: AppServices) -> None:
    if args.command == "add-user":
        user_id = services.directory.create_user(args.display_name, args.email, args.role)
        print(f"Created user {user_id} ({args.email}).")
        return

    if services.user_id is None:
        raise ValueError("No current user; pass --as-user")

    if getattr(args, "text", None) is not None and not args.text.strip():
        raise ValueError("Message text is empty")

    if args.command == "add-job":
        job_id = services.directory.post_job(services.user_id, args.title, args.company)
        print(f"Posted job {job_id} ({args.title}).")
        return

    if args.command == "add-product":
        product_id = services.directory.list_item(services.user_id, args.title, args.price)
        print(f"Listed item {product_id} ({args.title}).")
        return

    if args.command == "apply":
        application_id = await services.applications.apply(args.job_id, args.cover_letter)
        print(f"Application {application_id} is pending.")
        return

    if args.command == "conversations":
        for conversation in await services.projector.list_conversations(services.user_id):
            print(
                f"{conversation.id}: [{conversation.scope_kind}] {conversation.title} "
                f"with {conversation.counterpart_name} ({conversation.unread_count} unread) "
                f"- {conversation.last_message}"
            )
        if services.projector.last_error is not None:
            print(f"Warning: {services.projector.last_error}")
        return

    if args.command == "by-user":
        conversations = await services.projector.list_conversations(services.user_id)
        for group in group_by_user(conversations):
            print(
                f"{group.user_id}: {group.user_name} "
                f"({len(group.conversations)} threads, {group.unread_count} unread)"
            )
        return

    if args.command == "messages":
        scope = Scope(kind=args.kind, scope_id=args.scope_id, counterpart_id=args.counterpart)
        for message in await services.projector.list_messages(scope, services.user_id):
            marker = "me" if message.is_sender else message.sender_email
            print(f"{message.created_at.isoformat()} {marker}: {message.body}")
        await services.messages.mark_read(services.user_id, scope)
        return

    if args.command == "send":
        scope = Scope(kind=args.kind, scope_id=args.scope_id, counterpart_id=args.counterpart)
        message = await services.messages.send_message(
            services.user_id, scope, args.text.strip()
        )
        print(f"Sent message {message.id}.")
        return

    if args.command == "message-employer":
        widget = services.job_thread(args.job_id, live=False)
        await widget.open()
        result = await widget.send(args.text)
        widget.close()
        if not result.ok:
            raise result.error
        print(f"Sent message {result.value.id} on application {widget.application_id}.")
        return

    if args.command == "message-seller":
        product = services.directory.get_product(args.product_id)
        if product is None:
            raise ValueError(f"Item {args.product_id} not found")
        widget = services.product_thread(args.product_id, product.seller_id, live=False)
        result = await widget.send(args.text)
        widget.close()
        if not result.ok:
            raise result.error
        print(f"Sent message {result.value.id} to seller {product.seller_id}.")
        return

    if args.command == "unread":
        badge = services.badge()
        count = await badge.recount_for(services.user_id)
        print(f"Unread: {count} ({badge.label or 'none'})")
        return


def run_cli() -> None:
    """Summary: Execute CLI commands based on arguments.

    Importance: Drives messaging workflows from a terminal.
    Alternatives: Invoke services via the HTTP API.
    """

    parser = build_parser()
    args = parser.parse_args()
    config = AppConfig.from_env()
    logging.basicConfig(level=config.log_level, format="%(levelname)s %(name)s: %(message)s")

    if args.command == "serve":
        serve()
        return

    if args.as_user is None and args.command != "add-user":
        services = build_services(config)
    else:
        services = build_context(config).services_for_user(args.as_user)
    asyncio.run(_run(args, services))


if __name__ == "__main__":
    run_cli()
