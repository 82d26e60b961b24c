"""
Custody Actions — read-only operator dashboard.

FastAPI application providing:
- Action overview (every configured value of every registered action)
- Recent events from the persistent event ledger
- Ledger chain verification

The dashboard never mutates an action: configuration goes through the
gated setters of the actions themselves.
"""

from __future__ import annotations

import html
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

from fastapi import FastAPI, HTTPException
from fastapi.responses import HTMLResponse

from custody_actions.config import settings

logger = logging.getLogger(__name__)


class DashboardState:
    """Mutable application state injected at startup."""

    def __init__(self) -> None:
        self.ledger: Any = None
        self.actions: dict[str, Any] = {}
        self.startup_time: datetime = datetime.now(timezone.utc)

    def register(self, action: Any) -> None:
        self.actions[action.name] = action


state = DashboardState()


# ── Application lifecycle ──────────────────────────────────────


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Connect to the event ledger unless one was injected already."""
    logger.info("Custody actions dashboard starting")

    if state.ledger is None:
        from custody_actions.ledger.service import EventLedger

        state.ledger = EventLedger(settings.database_url)
        state.ledger.initialize()
        logger.info("Dashboard connected to event ledger: %s", settings.database_url)

    yield

    logger.info("Custody actions dashboard shut down")


app = FastAPI(
    title="Custody Actions — Operator Dashboard",
    description="Read-only view of custody action configuration and events",
    version="0.1.0",
    lifespan=lifespan,
)


# ── HTML ───────────────────────────────────────────────────────


def _html_page(title: str, body: str) -> HTMLResponse:
    """Wrap body HTML in a complete page."""
    return HTMLResponse(f"""<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="utf-8">
    <title>{title} — Custody Actions</title>
    <style>
        body {{ font-family: -apple-system, 'Segoe UI', Helvetica, Arial, sans-serif;
               background: #0d1117; color: #c9d1d9; margin: 0; }}
        .container {{ max-width: 1100px; margin: 0 auto; padding: 1rem; }}
        .card {{ background: #161b22; border: 1px solid #30363d; border-radius: 8px;
                 padding: 1rem; margin: 1rem 0; }}
        h1, h2 {{ color: #58a6ff; }}
        table {{ width: 100%; border-collapse: collapse; font-size: 0.875rem; }}
        th, td {{ padding: 0.4rem 0.6rem; text-align: left; border-bottom: 1px solid #30363d; }}
        .mono {{ font-family: Consolas, monospace; font-size: 0.8rem; }}
    </style>
</head>
<body><div class="container"><h1>Custody Actions</h1>{body}</div></body>
</html>""")


@app.get("/", response_class=HTMLResponse)
async def overview():
    rows = "".join(
        f"<tr><td>{html.escape(name)}</td><td>{html.escape(action.kind)}</td>"
        f"<td class='mono'>{html.escape(action.owner)}</td>"
        f"<td>{len(action.events.history)}</td></tr>"
        for name, action in sorted(state.actions.items())
    )
    body = f"""
    <div class="card">
        <h2>Actions</h2>
        <table>
            <tr><th>Name</th><th>Kind</th><th>Owner</th><th>Events</th></tr>
            {rows or '<tr><td colspan="4">No actions registered</td></tr>'}
        </table>
    </div>"""
    return _html_page("Overview", body)


# ── Routes: Actions ────────────────────────────────────────────


@app.get("/api/actions")
async def api_actions():
    return {"actions": [action.describe() for _, action in sorted(state.actions.items())]}


@app.get("/api/actions/{name}")
async def api_action(name: str):
    action = state.actions.get(name)
    if action is None:
        raise HTTPException(status_code=404, detail=f"Unknown action '{name}'")
    return action.describe()


@app.get("/api/actions/{name}/events")
async def api_action_events(name: str, limit: int = 50):
    """In-memory events of one action since process start."""
    action = state.actions.get(name)
    if action is None:
        raise HTTPException(status_code=404, detail=f"Unknown action '{name}'")
    return {"events": [event.model_dump(mode="json") for event in action.recent_events(limit)]}


# ── Routes: Event Ledger ───────────────────────────────────────


def _require_ledger() -> Any:
    if state.ledger is None:
        raise HTTPException(status_code=503, detail="Event ledger not connected")
    return state.ledger


@app.get("/api/events/recent")
async def api_events_recent(limit: int = 50, source: str | None = None):
    from custody_actions.ledger.service import entry_to_dict

    ledger = _require_ledger()
    if source:
        entries = ledger.get_entries_by_source(source, limit=limit)
    else:
        entries = ledger.get_latest_entries(limit=limit)
    return {"entries": [entry_to_dict(entry) for entry in entries], "total": ledger.get_entry_count()}


@app.get("/api/events/verify")
async def api_events_verify():
    ledger = _require_ledger()
    is_valid, entries_verified, message = ledger.verify_chain()
    return {"valid": is_valid, "entries_verified": entries_verified, "message": message}
