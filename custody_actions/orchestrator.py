"""
Custody Actions — wiring entrypoint.

Connects a set of actions to the shared infrastructure:
1. Configures structured logging
2. Initializes the event ledger and subscribes it to every action
3. Registers the actions with the dashboard
"""

from __future__ import annotations

import logging

import structlog

from custody_actions.actions.base import BaseAction
from custody_actions.config import settings
from custody_actions.ledger.service import EventLedger

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    """Configure structured logging."""
    logging.basicConfig(level=settings.log_level, format="%(message)s")
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            (
                structlog.dev.ConsoleRenderer()
                if settings.log_format != "json"
                else structlog.processors.JSONRenderer()
            ),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(settings.log_level)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def bootstrap(actions: list[BaseAction], database_url: str | None = None) -> EventLedger:
    """
    Persist the events of ``actions`` and expose them on the dashboard.

    Args:
        actions: Actions to wire up.
        database_url: Ledger database, defaults to ``settings.database_url``.

    Returns:
        The initialized event ledger.
    """
    log = structlog.get_logger()
    log.info("custody_actions.orchestrator.starting", actions=[action.name for action in actions])

    ledger = EventLedger(database_url or settings.database_url)
    ledger.initialize()
    is_valid, entries, message = ledger.verify_chain()
    if not is_valid:
        log.critical("custody_actions.orchestrator.integrity_failure", message=message, entries=entries)
    log.info("custody_actions.orchestrator.ledger_ready", entries=entries, chain_valid=is_valid)

    from custody_actions.dashboard.app import state as dashboard_state

    dashboard_state.ledger = ledger
    for action in actions:
        action.events.subscribe(ledger.append)
        dashboard_state.register(action)

    log.info("custody_actions.orchestrator.running", action_count=len(actions))
    return ledger
