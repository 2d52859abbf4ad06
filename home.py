from __future__ import annotations

from datetime import date

import streamlit as st
import pandas as pd

from ledger.services.reports import compute_kpis
from ledger.ui import format_money, get_session, get_settings

st.set_page_config(page_title="M&S Finanzas", page_icon="🎱", layout="wide")

settings = get_settings()
session = get_session()
state = session.state
currency = state.business.get("currency", settings.currency)

st.title(f"🎱 {state.business.get('name', 'M&S - Control Finanzas')}")
st.caption(date.today().strftime("%A, %d %B %Y"))
if session.load_warning:
    st.warning(session.load_warning)

with st.sidebar:
    st.subheader("Environment")
    st.write(f"**Data directory:** `{settings.data_dir}`")
    st.write(f"**Database:** `{settings.db_path.name}`")
    st.write(f"**Sync:** {st.session_state.get('sync_status', 'Ready')}")

k = compute_kpis(state)

c1, c2, c3 = st.columns(3)
c1.metric("Income today", format_money(k["income_today"], currency))
c2.metric("Income this week", format_money(k["income_week"], currency))
c3.metric("Income this month", format_money(k["income_month"], currency))

c1, c2, c3 = st.columns(3)
c1.metric("Profit today", format_money(k["profit_today"], currency))
c2.metric("Profit this week", format_money(k["profit_week"], currency))
c3.metric("Profit this month", format_money(k["profit_month"], currency))

c1, c2 = st.columns(2)
c1.metric("Expenses today", format_money(k["expenses_today"], currency))
c2.metric("Active tables", f"{k['active_tables']}")

st.subheader("Low stock")
if k["low_stock"]:
    df = pd.DataFrame(k["low_stock"])[["name", "stock", "stockMin"]]
    st.dataframe(df, use_container_width=True, hide_index=True)
else:
    st.caption("No inventory alerts.")
