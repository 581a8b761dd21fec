"""Operational commands.

Usage:
    python -m mist.cli <command> [OPTIONS]

Examples:
    # Run one janitor pass now (finalize stale processing requests)
    python -m mist.cli sweep

    # Treat requests older than 5 minutes as stale
    python -m mist.cli sweep --stale-after 300

    # Put the API into maintenance mode (new submissions are rejected)
    python -m mist.cli set-status maintenance

    # Credit 500 ink to a user
    python -m mist.cli grant-ink 3f0b1c9e-6a51-4f51-a7b6-0f3c6d1d8e2a 500
"""

import asyncio
import sys
from argparse import ArgumentParser, Namespace
from typing import Optional, Sequence
from uuid import UUID

import httpx
import structlog
from sqlalchemy.exc import SQLAlchemyError

from mist.core import timezone  # noqa: F401
from mist.core.config import Settings, configure_logging
from mist.core.database import create_engine, create_session_factory
from mist.models.system_state import ApiStatus
from mist.services.exceptions import TransientError
from mist.services.generation.reconciler import CompletionReconciler
from mist.services.notifications.fcm_client import FcmClient
from mist.services.retry import RetryPolicy
from mist.services.storage.backblaze_client import BackblazeClient
from mist.uow import UowFactory, create_uow_factory
from mist.workers.janitor import sweep_stale_requests

logger = structlog.get_logger()


def parse_args(argv: Optional[Sequence[str]] = None) -> Namespace:
    """Parse command-line arguments."""
    parser = ArgumentParser(description="Mist backend operations")
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging (DEBUG level)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    sweep = subparsers.add_parser("sweep", help="Finalize stale processing requests as error")
    sweep.add_argument(
        "--stale-after",
        type=float,
        default=None,
        help="Age in seconds after which a processing request is stale (default: from settings)",
    )

    set_status = subparsers.add_parser("set-status", help="Set the API status")
    set_status.add_argument("status", choices=[s.value for s in ApiStatus])

    grant = subparsers.add_parser("grant-ink", help="Credit ink to a user")
    grant.add_argument("user_id", type=UUID)
    grant.add_argument("amount", type=int)

    return parser.parse_args(argv)


async def set_api_status(uow_factory: UowFactory, status: ApiStatus) -> int:
    async with await uow_factory() as uow:
        await uow.system_state.set_api_status(status)

    logger.info("cli.api_status_set", status=status.value)
    print(f"API status set to {status.value}")
    return 0


async def grant_ink(uow_factory: UowFactory, user_id: UUID, amount: int) -> int:
    if amount <= 0:
        print("Error: amount must be positive", file=sys.stderr)
        return 1

    async with await uow_factory() as uow:
        granted = await uow.users.grant_ink(user_id, amount)

    if not granted:
        logger.error("cli.user_not_found", user_id=str(user_id))
        print(f"Error: user {user_id} not found", file=sys.stderr)
        return 1

    logger.info("cli.ink_granted", user_id=str(user_id), amount=amount)
    print(f"Granted {amount} ink to {user_id}")
    return 0


async def sweep(uow_factory: UowFactory, reconciler: CompletionReconciler, stale_after: float) -> int:
    finalized = await sweep_stale_requests(uow_factory, reconciler, stale_after)
    print(f"Finalized {finalized} stale request(s)")
    return 0


async def async_main(argv: Optional[Sequence[str]] = None) -> int:
    """Main CLI entry point (async).

    Returns:
        Exit code: 0 (success), 1 (error)
    """
    args = parse_args(argv)

    settings = Settings()  # type: ignore[call-arg]
    if args.verbose:
        settings.log_level = "DEBUG"
    configure_logging(settings)

    engine = create_engine(settings.database_url, settings.db_pool_size)
    uow_factory = create_uow_factory(create_session_factory(engine))

    try:
        if args.command == "set-status":
            return await set_api_status(uow_factory, ApiStatus(args.status))

        if args.command == "grant-ink":
            return await grant_ink(uow_factory, args.user_id, args.amount)

        async with httpx.AsyncClient(timeout=httpx.Timeout(30.0)) as http:
            reconciler = CompletionReconciler(
                uow_factory,
                BackblazeClient(
                    http,
                    key_id=settings.backblaze_key_id,
                    application_key=settings.backblaze_application_key,
                    bucket_id=settings.backblaze_bucket_id,
                ),
                FcmClient(http, settings.fcm_server_key),
                RetryPolicy(
                    attempts=settings.finalize_retry_attempts,
                    interval=settings.finalize_retry_interval_seconds,
                    retry_on=(SQLAlchemyError, TransientError),
                ),
            )
            stale_after = args.stale_after or settings.janitor_stale_after_seconds
            return await sweep(uow_factory, reconciler, stale_after)

    except KeyboardInterrupt:
        logger.info("cli.interrupted")
        print("\nInterrupted by user", file=sys.stderr)
        return 130

    except Exception as e:
        logger.error(
            "cli.unexpected_error",
            command=args.command,
            error=str(e),
            error_type=type(e).__name__,
        )
        print(f"\nUnexpected error: {e}", file=sys.stderr)
        return 1

    finally:
        await engine.dispose()


def main() -> None:
    """Synchronous entry point for CLI."""
    sys.exit(asyncio.run(async_main()))


if __name__ == "__main__":
    main()
