import pandas as pd
import plotly.graph_objects as go
import requests
import streamlit as st

from caterflow.app.core.config import get_settings

API_URL = get_settings().CATERFLOW_API_URL.rstrip("/")

# --- CONFIGURATION & DESIGN ---
st.set_page_config(page_title="CATERFLOW - COMMAND CENTER", layout="wide", page_icon="🍽️")

st.markdown("""
    <style>
    .stMetric {
        background-color: #1e2130;
        padding: 15px;
        border-radius: 10px;
        border-left: 5px solid #00ffcc;
    }
    .main {
        background-color: #0e1117;
    }
    h1 {
        color: #00ffcc;
        text-shadow: 2px 2px #000;
    }
    .stButton>button {
        width: 100%;
        border-radius: 5px;
        height: 3em;
        background-color: #00ffcc;
        color: black;
        font-weight: bold;
    }
    </style>
    """, unsafe_allow_html=True)


# --- CLIENT API ---
def api_login(email, password):
    r = requests.post(f"{API_URL}/auth/login", json={"email": email, "password": password}, timeout=10)
    if r.status_code != 200:
        raise RuntimeError(r.json().get("detail", "Connexion refusée"))
    return r.json()


def api_get(path, token, **params):
    r = requests.get(f"{API_URL}{path}", headers={"Authorization": f"Bearer {token}"}, params=params, timeout=30)
    r.raise_for_status()
    return r


def api_post(path, token, payload):
    r = requests.post(f"{API_URL}{path}", headers={"Authorization": f"Bearer {token}"}, json=payload, timeout=30)
    r.raise_for_status()
    return r.json()


# --- AUTHENTIFICATION ---
with st.sidebar:
    st.header("🔐 CONNEXION")
    if "token" not in st.session_state:
        email = st.text_input("Email")
        password = st.text_input("Mot de passe", type="password")
        if st.button("Se connecter"):
            try:
                session = api_login(email, password)
            except (RuntimeError, requests.RequestException) as exc:
                st.error(str(exc))
            else:
                st.session_state["token"] = session["access_token"]
                st.session_state["user"] = session["user"]
                st.rerun()
    else:
        user = st.session_state["user"]
        st.write(f"👤 **{user['name']}** ({user['role']})")
        if st.button("Se déconnecter"):
            st.session_state.clear()
            st.rerun()

if "token" not in st.session_state:
    st.title("🛡️ CATERFLOW COMMAND CENTER")
    st.info("Connectez-vous pour accéder au stock.")
    st.stop()

token = st.session_state["token"]

# --- FILTRE SITE ---
sites = api_get("/sites", token).json()
with st.sidebar:
    st.divider()
    st.header("🏭 SITE")
    choices = {"Tous les sites": None} | {s["name"]: s["id"] for s in sites}
    site_label = st.selectbox("Site", list(choices))
    site_id = choices[site_label]

site_ids = [site_id] if site_id is not None else []

st.title("🛡️ CATERFLOW COMMAND CENTER")
st.write(f"📍 **Périmètre :** {site_label}")

# --- INDICATEURS ---
stats = api_post("/dashboard/stats", token, {"siteIds": site_ids})["stats"]
c1, c2, c3, c4 = st.columns(4)
c1.metric("VALEUR DU STOCK", f"{float(stats['totalInventoryValue']):,.2f}")
c2.metric("STOCK BAS", stats["lowStockItemsCount"])
c3.metric("RUPTURES", stats["outOfStockItemsCount"])
c4.metric("EN ATTENTE", stats["pendingActionsCount"])

# --- VALORISATION ---
params = {"site_id": site_id} if site_id is not None else {}
values = api_get("/analytics/stock-values", token, **params).json()
df = pd.DataFrame(values["items"])

st.markdown("---")
st.markdown("### 📦 Valorisation du stock")
if df.empty:
    st.write("Aucun article.")
else:
    df["stock_value"] = df["stock_value"].astype(float)
    df["current_stock"] = df["current_stock"].astype(float)
    top = df.sort_values("stock_value", ascending=False).head(20)

    colors = {"in-stock": "#00ffcc", "low-stock": "#ffaa00", "out-of-stock": "#ff0066"}
    fig = go.Figure()
    fig.add_trace(go.Bar(
        x=top["name"],
        y=top["stock_value"],
        marker_color=[colors.get(s, "#888888") for s in top["stock_status"]],
        name="Valeur",
    ))
    fig.update_layout(
        template="plotly_dark",
        height=350,
        margin=dict(l=20, r=20, t=30, b=20),
    )
    st.plotly_chart(fig, use_container_width=True)

    st.dataframe(
        df[["sku", "name", "category", "current_stock", "unit_of_measure", "stock_value", "stock_status"]],
        use_container_width=True,
        hide_index=True,
    )

# --- ALERTES ---
st.markdown("---")
st.markdown("### ⚠️ Articles sous le seuil")
low = pd.DataFrame(api_post("/low-stock", token, {"siteIds": site_ids}))
if low.empty:
    st.success("✅ STOCK OPTIMAL")
else:
    st.dataframe(
        low[["sku", "name", "current_stock", "minimum_stock_level", "reorder_quantity", "site_name", "bin_name"]],
        use_container_width=True,
        hide_index=True,
    )

# --- BONS DE COMMANDE ---
st.markdown("---")
st.markdown("### 🧾 Bons de commande")
orders = api_get("/purchase-orders", token).json()
if site_id is not None:
    orders = [o for o in orders if o["site_id"] == site_id]
if not orders:
    st.write("Aucun bon de commande.")
else:
    po_df = pd.DataFrame(orders)[["po_number", "supplier_name", "status", "total_amount", "order_date"]]
    st.dataframe(po_df, use_container_width=True, hide_index=True)

    by_number = {o["po_number"]: o["id"] for o in orders}
    chosen = st.selectbox("Bon de commande", list(by_number))
    pdf_bytes = api_get(f"/purchase-orders/{by_number[chosen]}/pdf", token).content
    st.download_button(
        label=f"📄 Télécharger {chosen}",
        data=pdf_bytes,
        file_name=f"{chosen}.pdf",
        mime="application/pdf",
    )

st.divider()
st.caption("Caterflow | Stock recalculé à la volée : dernier comptage + mouvements postés")
