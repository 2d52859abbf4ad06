from __future__ import annotations

from pathlib import Path

import streamlit as st

from ledger.config import Settings, configure_logging, load_settings
from ledger.services.session import LedgerSession

SESSION_DATA_DIR_KEY = "ledger_data_dir"


@st.cache_resource
def _settings_for(data_dir: str | None) -> Settings:
    settings = load_settings(data_dir)
    configure_logging(settings.log_level)
    return settings


def get_settings() -> Settings:
    # Session state (set via Data Management page) wins over env/persisted settings.
    return _settings_for(st.session_state.get(SESSION_DATA_DIR_KEY))


@st.cache_resource
def _session_for(db_path: Path, legacy_dir: Path) -> LedgerSession:
    session = LedgerSession(db_path, legacy_dir)
    session.load_or_init()
    st.session_state["sync_status"] = session.auto_sync()
    return session


def get_session() -> LedgerSession:
    settings = get_settings()
    return _session_for(settings.db_path, settings.legacy_dir)


def format_money(value: object, currency: str = "GTQ") -> str:
    try:
        n = float(value or 0)
    except (TypeError, ValueError):
        n = 0.0
    return f"{currency} {n:,.2f}"
