"""Summary: Command-line interface for Mailcast.

Importance: Provides a local entry point for managing recipients, content, and dispatches.
Alternatives: Use the HTTP API for every operation.
"""

from __future__ import annotations

import argparse
import logging
import sys

from mailcast.app import build_services
from mailcast.config import AppConfig
from mailcast.directory import RecipientFilter
from mailcast.errors import MailcastError
from mailcast.events import EventContext
from mailcast.jobs import InlineJobRunner
from mailcast.models import ContentItem, Recipient, Visibility


def build_parser() -> argparse.ArgumentParser:
    """Summary: Declare the mailcast subcommands.

    Importance: Mirrors the HTTP endpoints so operators can work without the server.
    Alternatives: Generate commands from the API schema.
    """

    parser = argparse.ArgumentParser(description="Mailcast CLI")
    subparsers = parser.add_subparsers(dest="command", required=True)

    add_recipient = subparsers.add_parser("add-recipient", help="Add a recipient")
    add_recipient.add_argument("email", type=str)
    add_recipient.add_argument("--name", type=str, default="")
    add_recipient.add_argument("--paid", action="store_true")
    add_recipient.add_argument("--unsubscribed", action="store_true")

    list_recipients = subparsers.add_parser("list-recipients", help="List recipients")
    list_recipients.add_argument("--subscribed-only", action="store_true")
    list_recipients.add_argument("--limit", type=int, default=50)

    add_content = subparsers.add_parser("add-content", help="Create a draft content item")
    add_content.add_argument("title", type=str)
    add_content.add_argument("html", type=str)
    add_content.add_argument("--plaintext", type=str, default="")
    add_content.add_argument(
        "--visibility",
        choices=[visibility.value for visibility in Visibility],
        default=Visibility.PUBLIC.value,
    )

    publish = subparsers.add_parser("publish", help="Publish content and send it")
    publish.add_argument("content_id", type=int)
    publish.add_argument("--importing", action="store_true", help="Publish without sending")

    send_test = subparsers.add_parser("send-test", help="Send a test email for content")
    send_test.add_argument("content_id", type=int)
    send_test.add_argument("emails", nargs="+", type=str)

    show_dispatch = subparsers.add_parser("show-dispatch", help="Show a dispatch record")
    show_dispatch.add_argument("dispatch_id", type=int)

    list_batches = subparsers.add_parser("list-batches", help="List recipient batches")
    list_batches.add_argument("dispatch_id", type=int)

    retry = subparsers.add_parser("retry", help="Retry a failed dispatch")
    retry.add_argument("dispatch_id", type=int)

    unsubscribe = subparsers.add_parser("unsubscribe", help="Unsubscribe a recipient by uuid")
    unsubscribe.add_argument("uuid", type=str)

    return parser


def run_cli(argv: list[str] | None = None) -> int:
    """Summary: Run one mailcast command and return its exit code.

    Importance: Dispatch jobs run inline so the command returns after the send finishes.
    Alternatives: Enqueue and exit, leaving sends to a separate worker.
    """

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    parser = build_parser()
    args = parser.parse_args(argv)
    config = AppConfig.from_env()
    services = build_services(config, jobs=InlineJobRunner())
    try:
        _dispatch_command(args, services)
    except MailcastError as exc:
        print(f"Error: {exc.message}", file=sys.stderr)
        return 1
    finally:
        services.close()
    return 0


def _dispatch_command(args: argparse.Namespace, services) -> None:
    if args.command == "add-recipient":
        recipient = services.directory.add(
            Recipient(
                email=args.email,
                name=args.name,
                subscribed=not args.unsubscribed,
                paid=args.paid,
            )
        )
        print(f"Added recipient {recipient.id} ({recipient.email}, uuid {recipient.uuid}).")
        return

    if args.command == "list-recipients":
        page = services.directory.list(
            RecipientFilter(subscribed=True if args.subscribed_only else None, limit=args.limit)
        )
        for recipient in page.items:
            flags = "paid" if recipient.paid else "free"
            state = "subscribed" if recipient.subscribed else "unsubscribed"
            print(f"{recipient.id}: {recipient.email} [{flags}, {state}]")
        print(f"{page.total} total.")
        return

    if args.command == "add-content":
        content = services.content.create(
            ContentItem(
                title=args.title,
                html=args.html,
                plaintext=args.plaintext,
                visibility=args.visibility,
            )
        )
        print(f"Created content {content.id} ({content.title}).")
        return

    if args.command == "publish":
        record = services.content.publish(
            args.content_id, EventContext(importing=args.importing)
        )
        if record is None:
            print("Published; no eligible recipients, nothing to send.")
            return
        record = services.manager.get(record.id)
        print(f"Dispatch {record.id}: {record.status} ({record.recipient_count} recipients).")
        return

    if args.command == "send-test":
        content = services.content.get(args.content_id)
        outcomes = services.dispatcher.send_test(content, args.emails)
        sent = sum(outcome.recipient_count for outcome in outcomes if outcome.is_success)
        print(f"Test email accepted for {sent} of {len(args.emails)} addresses.")
        return

    if args.command == "show-dispatch":
        record = services.manager.get(args.dispatch_id)
        print(f"Dispatch {record.id} for content {record.content_id}")
        print(f"status: {record.status}")
        print(f"recipients: {record.recipient_count}")
        print(f"subject: {record.subject}")
        print(f"submitted_at: {record.submitted_at}")
        if record.error:
            print(f"error: {record.error}")
        print(f"batches ok: {len(record.meta)}, failed: {len(record.error_detail)}")
        return

    if args.command == "list-batches":
        services.manager.get(args.dispatch_id)
        for batch in services.snapshots.batches(args.dispatch_id):
            print(f"{batch.id}: {batch.recipient_count} recipients ({batch.created_at})")
        return

    if args.command == "retry":
        services.manager.retry_failed(args.dispatch_id)
        record = services.manager.get(args.dispatch_id)
        print(f"Dispatch {record.id}: {record.status}.")
        return

    if args.command == "unsubscribe":
        recipient = services.unsubscribe.handle({"uuid": args.uuid})
        print(f"Unsubscribed {recipient['email']}.")
        return


def main() -> None:
    sys.exit(run_cli())


if __name__ == "__main__":
    main()
