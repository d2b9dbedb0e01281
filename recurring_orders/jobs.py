"""
Entry point for the due-delivery run.

The engine keeps no clock, so a cron job or any other external scheduler
invokes ``recurring-orders-due-deliveries`` once per run. Each run is one unit
of work: generated delivery orders and schedule advances commit together when
the run finishes, and per-order failures are reported without aborting it.
"""

import argparse
import asyncio
import sys
from datetime import datetime, timezone
from typing import Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from recurring_orders.core.logging import (
    clear_context,
    configure_logging,
    get_logger,
    set_actor_id,
    set_correlation_id,
)
from recurring_orders.database.connection import (
    check_database_health,
    close_database_connections,
    get_session,
)
from recurring_orders.schemas.orders import DueDeliveryReport
from recurring_orders.services.catalog.gateway import CatalogGateway, SqlCatalogGateway
from recurring_orders.services.orders.due_deliveries import (
    SYSTEM_ACTOR,
    DueDeliveryProcessor,
)

logger = get_logger(__name__)


async def run_due_deliveries(
    now: Optional[datetime] = None,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    catalog: Optional[CatalogGateway] = None,
) -> DueDeliveryReport:
    """
    Process every schedule due on or before ``now`` in a single session.

    Args:
        now: Reference instant, defaults to the current time
        session_factory: Factory for the run's session, defaults to the global one
        catalog: Catalog gateway for stock reservations

    Returns:
        Report of the run
    """
    correlation_id = set_correlation_id()
    set_actor_id(SYSTEM_ACTOR)

    try:
        async with get_session(session_factory) as session:
            processor = DueDeliveryProcessor(
                session=session,
                catalog=catalog or SqlCatalogGateway(session_factory),
            )
            report = await processor.process_due_deliveries(now=now)

        logger.info(
            "Due delivery run finished",
            correlation_id=correlation_id,
            processed=report.processed,
            created=report.created,
            ended=report.ended,
            failed=len(report.errors),
        )
        return report
    finally:
        clear_context()


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="recurring-orders-due-deliveries",
        description="Generate delivery orders for recurring schedules that are due.",
    )
    parser.add_argument(
        "--as-of",
        type=datetime.fromisoformat,
        default=None,
        help="ISO-8601 instant to treat as now (naive values are read as UTC)",
    )
    return parser.parse_args(argv)


async def _main(as_of: Optional[datetime]) -> int:
    try:
        if not await check_database_health():
            return 2
        report = await run_due_deliveries(now=as_of)
    finally:
        await close_database_connections()

    print(report.model_dump_json(indent=2))
    return 1 if report.errors else 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Console script: exit 0 on a clean run, 1 on per-order failures, 2 if the database is down."""
    configure_logging()
    args = parse_args(argv)

    as_of = args.as_of
    if as_of is not None and as_of.tzinfo is None:
        as_of = as_of.replace(tzinfo=timezone.utc)

    return asyncio.run(_main(as_of))


if __name__ == "__main__":
    sys.exit(main())
