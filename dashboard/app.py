"""Streamlit operator dashboard for the whole-second clicker."""
import os

import streamlit as st
import pandas as pd
import requests
import plotly.express as px

# Configuration: prioritize Streamlit secrets, then env var, then localhost fallback
def get_backend_url():
    """Get backend URL from secrets, env var, or fallback to localhost."""
    # Try Streamlit secrets first (for Streamlit Cloud deployment)
    try:
        if hasattr(st, "secrets") and "BACKEND_URL" in st.secrets:
            return st.secrets["BACKEND_URL"].rstrip("/")
    except Exception:
        pass
    env_url = os.getenv("BACKEND_URL")
    if env_url:
        return env_url.rstrip("/")
    # Fallback to localhost for local development
    return "http://127.0.0.1:8000"

API_BASE_URL = get_backend_url()

st.set_page_config(
    page_title="Whole-Second Clicker",
    page_icon="⏱️",
    layout="wide",
)

st.title("⏱️ Whole-Second Clicker Admin")


def check_backend_health():
    """Check if backend is running (longer timeout for cloud cold starts)."""
    try:
        response = requests.get(f"{API_BASE_URL}/health", timeout=10)
        return response.status_code == 200 and response.json().get("status") == "ok"
    except requests.exceptions.RequestException:
        return False


def admin_headers(admin_key: str):
    return {"X-ADMIN-KEY": admin_key}


def get_settings():
    """Fetch the effective game settings (public endpoint)."""
    try:
        response = requests.get(f"{API_BASE_URL}/settings", timeout=5)
        if response.status_code == 200:
            return response.json()
        return None
    except requests.exceptions.RequestException:
        return None


def update_settings(admin_key: str, payload: dict):
    """PUT new settings. Returns (success, message)."""
    try:
        response = requests.put(
            f"{API_BASE_URL}/admin/settings",
            json=payload,
            headers=admin_headers(admin_key),
            timeout=5,
        )
    except requests.exceptions.RequestException as e:
        return False, str(e)
    if response.status_code == 200:
        return True, "Settings saved."
    return False, f"HTTP {response.status_code}: {response.text}"


def get_players(admin_key: str):
    """Fetch the admin player listing, or {"error": ...}."""
    try:
        response = requests.get(
            f"{API_BASE_URL}/admin/players", headers=admin_headers(admin_key), timeout=5
        )
        if response.status_code == 200:
            return response.json()
        return {"error": f"HTTP {response.status_code}"}
    except requests.exceptions.RequestException as e:
        return {"error": str(e)}


def get_players_csv(admin_key: str):
    try:
        response = requests.get(
            f"{API_BASE_URL}/admin/players/export", headers=admin_headers(admin_key), timeout=10
        )
        if response.status_code == 200:
            return response.content
        return None
    except requests.exceptions.RequestException:
        return None


def reset_player(admin_key: str, player_id: str):
    try:
        response = requests.post(
            f"{API_BASE_URL}/admin/players/{player_id}/reset",
            headers=admin_headers(admin_key),
            timeout=5,
        )
        return response.status_code == 200
    except requests.exceptions.RequestException:
        return False


def reset_all(admin_key: str):
    """Reset every player. Returns the number reset, or None on failure."""
    try:
        response = requests.post(
            f"{API_BASE_URL}/admin/reset_all", headers=admin_headers(admin_key), timeout=10
        )
        if response.status_code == 200:
            return response.json().get("players_reset", 0)
        return None
    except requests.exceptions.RequestException:
        return None


def get_player_attempts(player_id: str):
    """Current-session attempts for one player, newest first."""
    try:
        response = requests.get(f"{API_BASE_URL}/players/{player_id}/attempts", timeout=5)
        if response.status_code == 200:
            return response.json()
        return []
    except requests.exceptions.RequestException:
        return []


# Sidebar
st.sidebar.header("Controls")

backend_ok = check_backend_health()
if backend_ok:
    st.sidebar.markdown("**Backend:** :green_circle: Connected")
else:
    st.sidebar.markdown("**Backend:** :red_circle: Unreachable")
    st.warning("Backend unreachable (may be waking up or misconfigured). Refresh the page to retry.")
st.sidebar.caption(f"`{API_BASE_URL}`")

admin_key = st.sidebar.text_input(
    "Admin key",
    value=os.getenv("ADMIN_KEY", ""),
    type="password",
    help="Sent as X-ADMIN-KEY to the admin endpoints",
)

if not admin_key:
    st.info("Enter the admin key in the sidebar to manage players and settings.")
    st.stop()

# Settings panel
st.subheader("Game Settings")
settings = get_settings()

if settings is None:
    st.error("Failed to load settings.")
else:
    with st.form("settings_form"):
        col1, col2 = st.columns(2)
        with col1:
            attempts_per_session = st.number_input(
                "Attempts per session", min_value=1, value=settings["attempts_per_session"], step=1
            )
        with col2:
            cooldown_minutes = st.number_input(
                "Cooldown (minutes)", min_value=1, value=settings["cooldown_minutes"], step=1
            )

        bands_df = pd.DataFrame(settings["reward_bands"])
        edited_bands = st.data_editor(
            bands_df,
            num_rows="dynamic",
            use_container_width=True,
            hide_index=True,
            column_config={
                "min": st.column_config.NumberColumn("Min offset (ms)", min_value=0, step=1),
                "max": st.column_config.NumberColumn("Max offset (ms, blank = open)", min_value=0, step=1),
                "reward": st.column_config.NumberColumn("Smiles", min_value=0, step=1),
            },
        )

        if st.form_submit_button("Save settings"):
            bands = []
            for band in edited_bands.to_dict("records"):
                if pd.isna(band.get("min")) or pd.isna(band.get("reward")):
                    continue
                bands.append({
                    "min": int(band["min"]),
                    "max": None if pd.isna(band.get("max")) else int(band["max"]),
                    "reward": int(band["reward"]),
                })
            ok, message = update_settings(admin_key, {
                "attempts_per_session": int(attempts_per_session),
                "cooldown_minutes": int(cooldown_minutes),
                "reward_bands": bands,
            })
            if ok:
                st.success(message)
                st.rerun()
            else:
                st.error(message)

st.divider()

# Players panel
st.subheader("Players")
players = get_players(admin_key)

if isinstance(players, dict) and "error" in players:
    st.error(f"Failed to fetch players: {players['error']}")
elif not players:
    st.info("No players yet.")
else:
    df = pd.DataFrame(players)
    df["created_at"] = pd.to_datetime(df["created_at"])
    df["last_attempt_at"] = pd.to_datetime(df["last_attempt_at"])

    col1, col2, col3, col4 = st.columns(4)
    with col1:
        st.metric("Players", len(df))
    with col2:
        st.metric("Total Attempts", int(df["total_attempts"].sum()))
    with col3:
        best = df["best_offset_ms"].min()
        st.metric("Best Offset", "-" if pd.isna(best) else f"{int(best)} ms")
    with col4:
        st.metric("Out of Attempts", int((df["attempts_remaining"] == 0).sum()))

    st.dataframe(
        df[[
            "player_id", "best_offset_ms", "best_reward", "attempts_remaining",
            "sessions_started", "total_attempts", "last_attempt_at", "created_at",
        ]],
        use_container_width=True,
        hide_index=True,
    )

    scored = df.dropna(subset=["best_offset_ms"])
    if not scored.empty:
        fig_offsets = px.histogram(
            scored,
            x="best_offset_ms",
            nbins=25,
            title="Best Offset Distribution",
            labels={"best_offset_ms": "Best offset (ms)"},
        )
        fig_offsets.update_layout(yaxis_title="Players", showlegend=False)
        st.plotly_chart(fig_offsets, use_container_width=True)

    csv_bytes = get_players_csv(admin_key)
    if csv_bytes is not None:
        st.download_button(
            "Download CSV",
            data=csv_bytes,
            file_name="players_export.csv",
            mime="text/csv",
        )

    st.divider()

    # Per-player detail and resets
    st.subheader("Player Detail")
    selected = st.selectbox("Player", df["player_id"].tolist())
    attempts = get_player_attempts(selected)
    if attempts:
        attempts_df = pd.DataFrame(attempts)
        st.dataframe(
            attempts_df[["offset_ms", "reward", "current_reward", "created_at"]],
            use_container_width=True,
            hide_index=True,
        )
    else:
        st.caption("No attempts in the current session.")

    col_reset, col_reset_all = st.columns(2)
    with col_reset:
        if st.button(f"Reset {selected}"):
            if reset_player(admin_key, selected):
                st.success(f"Started a fresh session for {selected}.")
                st.rerun()
            else:
                st.error("Reset failed.")
    with col_reset_all:
        confirm = st.checkbox("I really want to reset every player")
        if st.button("Reset all players", disabled=not confirm):
            count = reset_all(admin_key)
            if count is None:
                st.error("Reset failed.")
            else:
                st.success(f"Reset {count} players.")
                st.rerun()

# Footer
st.sidebar.divider()
st.sidebar.caption("Whole-Second Clicker v0.1.0")
