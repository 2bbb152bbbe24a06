"""Main Entry Point for capturedesk.

Capture inbox server, batch publisher and newsletter tooling.

Usage:
    python -m capturedesk.main serve                               # HTTP server
    python -m capturedesk.main serve --port 8080                   # custom port
    python -m capturedesk.main publish                             # publish approved queue
    python -m capturedesk.main publish --id <capture-id>           # publish one capture
    python -m capturedesk.main reconcile                           # repair unmarked batches
    python -m capturedesk.main newsletter preview --type daily     # render to disk
    python -m capturedesk.main newsletter send --type weekly --confirm
"""

import argparse
import asyncio
import signal
import sys
from pathlib import Path

from capturedesk.capture import lifecycle
from capturedesk.capture.github import create_github_client
from capturedesk.capture.models import BatchPublishResult
from capturedesk.capture.publish import BatchPublisher
from capturedesk.capture.store import CaptureStore
from capturedesk.core.config import Config, get_config
from capturedesk.core.exceptions import CaptureDeskError, ConfigurationError
from capturedesk.core.kv_store import create_kv_store
from capturedesk.core.logger import get_logger, setup_logging
from capturedesk.newsletter.generate import generate_bundle, write_preview
from capturedesk.newsletter.indexer import ContentIndexer
from capturedesk.newsletter.mailer import create_resend_client, send_newsletter
from capturedesk.server import run_server

logger = get_logger(__name__)


def _build_publisher(config: Config) -> BatchPublisher:
    config.require_github()
    return BatchPublisher(
        create_github_client(config),
        content_dir=config.content_dir,
        image_dir=config.image_dir,
    )


async def _serve(config: Config, port: int | None) -> int:
    if port is not None:
        config.port = port
    runner = await run_server(config)

    shutdown = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, shutdown.set)
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            signal.signal(sig, lambda s, f: shutdown.set())

    try:
        await shutdown.wait()
    finally:
        logger.info("Shutting down server")
        await runner.cleanup()
    return 0


def print_publish_result(result: BatchPublishResult | None) -> None:
    """Print a batch summary to stdout."""
    if result is None:
        print("No items to publish")
        return
    print("\n=== Publish Complete ===")
    print(f"Commit:    {result.commit_id or '-'}")
    print(f"Published: {len(result.published_ids)}")
    print(f"Files:     {result.files_changed}")
    print(f"Skipped:   {len(result.skipped)}")
    for item in result.skipped:
        print(f"  - {item.id}: {item.reason}")


async def _publish(config: Config, capture_id: str | None) -> int:
    store = CaptureStore(create_kv_store(config))
    publisher = _build_publisher(config)
    try:
        if capture_id:
            info, sha = await lifecycle.publish_one(store, publisher, capture_id)
            print(f"Published {info.id} to {info.path} ({sha})")
            return 0
        result = await lifecycle.publish_all(store, publisher)
        print_publish_result(result)
        return 0
    finally:
        await publisher.close()
        await store.close()


async def _reconcile(config: Config) -> int:
    store = CaptureStore(create_kv_store(config))
    publisher = _build_publisher(config)
    try:
        marked = await publisher.reconcile_published(store)
    finally:
        await publisher.close()
        await store.close()
    print(f"Marked {len(marked)} captures as published")
    for info in marked:
        print(f"  - {info.id}: {info.path}")
    return 0


def _newsletter_preview(config: Config, parsed_args: argparse.Namespace) -> int:
    bundle = generate_bundle(
        ContentIndexer(config.content_root),
        parsed_args.type,
        parsed_args.date,
        site_url=config.site_url,
        newsletter_title=config.newsletter_title,
    )
    written = write_preview(bundle, Path(parsed_args.output_dir))
    print(f"Subject: {bundle.subject}")
    for name, variant in bundle.variants.items():
        print(f"  {name}: {variant.count} items")
    for path in written:
        print(f"Wrote {path}")
    return 0


async def _newsletter_send(config: Config, parsed_args: argparse.Namespace) -> int:
    if not parsed_args.confirm:
        print("Refusing to send without --confirm", file=sys.stderr)
        return 1

    bundle = generate_bundle(
        ContentIndexer(config.content_root),
        parsed_args.type,
        parsed_args.date,
        site_url=config.site_url,
        newsletter_title=config.newsletter_title,
    )
    client = create_resend_client(config)
    try:
        report = await send_newsletter(
            client,
            bundle,
            audience_id=config.resend_audience_id,
            sender=config.resend_from_email,
        )
    finally:
        await client.close()

    print(f"Subject:  {bundle.subject}")
    print(f"Scanned:  {report.contacts_scanned}")
    print(f"Eligible: {report.eligible}")
    print(f"Sent:     {report.sent}")
    print(f"Failed:   {report.failed}")
    return 0 if report.failed == 0 else 1


def create_argument_parser() -> argparse.ArgumentParser:
    """Create and configure the argument parser.

    Returns:
        Configured ArgumentParser instance.
    """
    parser = argparse.ArgumentParser(
        prog="capturedesk",
        description="Capture inbox, batch publisher and newsletter tooling.",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logging",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    serve = commands.add_parser("serve", help="Run the HTTP server")
    serve.add_argument("--port", type=int, default=None, help="Override CAPTURE_PORT")

    publish = commands.add_parser("publish", help="Publish approved captures")
    publish.add_argument("--id", dest="capture_id", help="Publish a single capture")

    commands.add_parser(
        "reconcile", help="Mark approved captures already present on the branch"
    )

    newsletter = commands.add_parser("newsletter", help="Newsletter digests")
    actions = newsletter.add_subparsers(dest="action", required=True)
    for name, help_text in (
        ("preview", "Render a digest to disk"),
        ("send", "Send a digest to subscribers"),
    ):
        action = actions.add_parser(name, help=help_text)
        action.add_argument(
            "--type", choices=("daily", "weekly"), default="daily", help="Window type"
        )
        action.add_argument("--date", default=None, help="Anchor date (YYYY-MM-DD)")
        if name == "preview":
            action.add_argument(
                "--output-dir",
                default="newsletter-preview",
                help="Directory for the rendered files",
            )
        else:
            action.add_argument(
                "--confirm", action="store_true", help="Actually send the emails"
            )
    return parser


def main(args: list[str] | None = None) -> int:
    """Main entry point.

    Args:
        args: Command line arguments (defaults to sys.argv[1:]).

    Returns:
        Exit code (0 for success, 1 for errors).
    """
    parser = create_argument_parser()
    parsed_args = parser.parse_args(args)

    try:
        config = get_config()
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    setup_logging("DEBUG" if parsed_args.verbose else config.log_level)

    try:
        if parsed_args.command == "serve":
            logger.info("Running server on port %d", parsed_args.port or config.port)
            return asyncio.run(_serve(config, parsed_args.port))
        if parsed_args.command == "publish":
            return asyncio.run(_publish(config, parsed_args.capture_id))
        if parsed_args.command == "reconcile":
            return asyncio.run(_reconcile(config))
        if parsed_args.action == "preview":
            return _newsletter_preview(config, parsed_args)
        return asyncio.run(_newsletter_send(config, parsed_args))
    except (CaptureDeskError, ConfigurationError) as e:
        logger.error("Command failed: %s", e)
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 0


if __name__ == "__main__":
    sys.exit(main())
