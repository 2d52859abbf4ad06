from __future__ import annotations

import streamlit as st

st.set_page_config(page_title="M&S Finanzas", page_icon="🎱", layout="wide")

pages = [
    st.Page("home.py", title="Dashboard", icon="🏠"),
    st.Page("pages/1_📦_Inventory.py", title="Inventory", icon="📦"),
    st.Page("pages/2_🛒_Sales.py", title="Sales", icon="🛒"),
    st.Page("pages/3_💸_Expenses.py", title="Expenses", icon="💸"),
    st.Page("pages/4_🎱_Tables.py", title="Tables", icon="🎱"),
    st.Page("pages/5_🧪_Data_Management.py", title="Data Management", icon="🧪"),
    st.Page("pages/6_📊_Reports.py", title="Reports", icon="📊"),
]

st.navigation(pages).run()
