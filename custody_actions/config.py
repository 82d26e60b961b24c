"""Custody Actions — Application configuration via environment variables."""

from __future__ import annotations

from pydantic_settings import BaseSettings


class ActionSettings(BaseSettings):
    """Central configuration loaded from environment / .env file."""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    # ── Execution metering ─────────────────────────────────────
    native_asset: str = "NATIVE"
    relay_base_gas: int = 21_000
    relay_cost_note: str = "RELAYER"

    # ── Host ───────────────────────────────────────────────────
    local_domain_id: int = 1

    # ── Event Ledger ───────────────────────────────────────────
    database_url: str = "sqlite:///custody_actions.db"

    # ── Logging ────────────────────────────────────────────────
    log_level: str = "INFO"
    log_format: str = "json"


settings = ActionSettings()
