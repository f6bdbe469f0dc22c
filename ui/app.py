"""Streamlit board for the bundle pipeline.

Run with: streamlit run ui/app.py

Pages:
1. Board - Cards by bucket, with filters and manual moves
2. Upload CSV - Preview a tracker export locally, then send it to the server
3. Summary - Totals and per-bucket / per-assignee counts

The page keeps a BoardReplica in session state: bootstrapped from the local
cache plus GET /api/cards, refreshed on demand.
"""

import sys
from datetime import date, datetime, time
from pathlib import Path

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

import requests
import streamlit as st

from core.config import get_config
from ingest.trip_csv import parse_trip_csv_bytes
from models.card import ASSIGNEES, BUCKET_ORDER, Bucket
from services import board_view
from services.board_client import BoardApiClient, BoardClientError, BoardReplica, bootstrap_replica
from services.bucket_classifier import MANUAL_ONLY_BUCKETS

# Page config must be first Streamlit call
st.set_page_config(
    page_title="Bundle Board",
    page_icon="📦",
    layout="wide",
    initial_sidebar_state="expanded",
)

UNASSIGNED = "(unassigned)"


def get_client() -> BoardApiClient:
    if "client" not in st.session_state:
        st.session_state["client"] = BoardApiClient(get_config().board.api_base_url)
    return st.session_state["client"]


def get_replica() -> BoardReplica:
    if "replica" not in st.session_state:
        st.session_state["replica"] = bootstrap_replica(get_client(), get_config().storage.cache_path)
    return st.session_state["replica"]


def refresh():
    """Resync the replica from the server."""
    try:
        get_replica().resync(get_client().fetch_cards())
        st.session_state["last_sync"] = datetime.now().strftime("%H:%M:%S")
    except BoardClientError as e:
        st.error(f"Refresh failed: {e}")
    except requests.RequestException as e:
        st.error(f"Server unreachable, showing cached cards: {e}")


def sidebar_filter() -> board_view.ViewFilter:
    """Build the active ViewFilter from the sidebar controls."""
    name = st.sidebar.selectbox("Filter", options=board_view.FILTER_NAMES, index=0)

    if name == board_view.FILTER_CUSTOM_RANGE:
        start = st.sidebar.date_input("From", value=date.today())
        end = st.sidebar.date_input("To", value=date.today())
        return board_view.ViewFilter.custom_range(start, end)
    if name == board_view.FILTER_ASSIGNEE:
        return board_view.ViewFilter.for_assignee(st.sidebar.selectbox("Assignee", options=ASSIGNEES))
    if name == board_view.FILTER_AMBASSADORS:
        path = get_config().board.ambassadors_path
        try:
            roster = board_view.load_ambassador_roster(path)
        except OSError as e:
            st.sidebar.warning(f"Ambassador list unavailable: {e}")
            roster = frozenset()
        return board_view.ViewFilter.ambassadors(roster)
    return board_view.ViewFilter(name)


# ============================================================================
# Page: Board
# ============================================================================
def render_card(card, key_prefix: str):
    today = date.today()
    with st.container(border=True):
        st.markdown(f"**{card.trip_id}** · {card.traveler or 'Unknown traveler'}")
        st.caption(
            f"{card.items_ready_to_process}/{card.items_accepted} ready · "
            f"{card.total_bundle_weight or '0'} lbs · {card.usa_dest or '-'}"
        )

        badge = board_view.ship_countdown(card, today)
        if badge:
            ship_date = board_view.parse_ship_date(card.ship_bundle)
            remaining = (datetime.combine(ship_date, time.min) - datetime.now()).total_seconds()
            st.caption(f"🚚 {badge} ({board_view.format_time_remaining(remaining)})")
        if card.manually_moved:
            st.caption("✋ Moved manually")

        with st.expander("Edit"):
            bucket_names = [bucket.value for bucket in BUCKET_ORDER]
            new_bucket = st.selectbox(
                "Bucket",
                options=bucket_names,
                index=bucket_names.index(card.current_bucket.value),
                key=f"{key_prefix}-bucket",
            )
            assignee_options = [UNASSIGNED] + list(ASSIGNEES)
            current = card.assigned_to if card.assigned_to in ASSIGNEES else UNASSIGNED
            new_assignee = st.selectbox(
                "Assigned to",
                options=assignee_options,
                index=assignee_options.index(current),
                key=f"{key_prefix}-assignee",
            )
            if st.button("Save", key=f"{key_prefix}-save"):
                edited = card.copy(
                    current_bucket=Bucket.parse(new_bucket),
                    assigned_to=None if new_assignee == UNASSIGNED else new_assignee,
                    manually_moved=True,
                )
                try:
                    get_client().save_card(edited)
                    refresh()
                    st.rerun()
                except BoardClientError as e:
                    st.error(str(e))


def page_board(view: board_view.ViewFilter):
    st.header("📦 Bundle Board")

    replica = get_replica()
    visible = replica.visible(view)
    summary = board_view.summarize(visible)
    st.write(summary.summary_line())

    columns = st.columns(len(BUCKET_ORDER))
    for column, bucket in zip(columns, BUCKET_ORDER):
        cards = [card for card in visible if card.current_bucket == bucket]
        with column:
            icon = "✋ " if bucket in MANUAL_ONLY_BUCKETS else ""
            st.subheader(f"{icon}{bucket.value} ({len(cards)})")
            for card in cards:
                render_card(card, key_prefix=f"{bucket.name}-{card.trip_id}")

    completed = [card for card in replica.cards.values() if card.current_bucket == Bucket.BUNDLE_COMPLETED]
    st.divider()
    if st.button(f"🧹 Clear {len(completed)} completed", disabled=not completed):
        try:
            result = get_client().clear_completed()
            st.success(f"Removed {result.get('removed', 0)} cards")
            refresh()
            st.rerun()
        except BoardClientError as e:
            st.error(str(e))


# ============================================================================
# Page: Upload CSV
# ============================================================================
def page_upload():
    st.header("📤 Upload CSV")

    uploaded = st.file_uploader(
        "Trip export",
        type=["csv"],
        help="Headers are matched loosely (BOM, case, underscores)",
    )
    if not uploaded:
        st.info("👆 Upload a trip CSV export to begin")
        return

    try:
        rows = parse_trip_csv_bytes(uploaded.getvalue())
    except UnicodeDecodeError as e:
        st.error(f"File is not UTF-8 text: {e}")
        return

    # Preview on a scratch replica so the page's board is not changed
    preview = BoardReplica()
    preview.cards = dict(get_replica().cards)
    result = preview.preview_merge(rows)

    col1, col2, col3 = st.columns(3)
    col1.metric("Rows", len(rows))
    col2.metric("Will merge", len(result.updates))
    col3.metric("Skipped", result.skipped)

    for warning in result.warnings:
        st.warning(warning)

    counts = preview.bucket_counts()
    st.bar_chart({bucket.value: count for bucket, count in counts.items()})

    if st.button("⬆️ Send to board", type="primary", disabled=not result.updates):
        try:
            response = get_client().upload_rows(rows)
            st.success(f"✅ Merged {response.get('count', 0)} rows ({response.get('total', 0)} cards on board)")
            refresh()
        except BoardClientError as e:
            st.error(f"Upload failed: {e}")


# ============================================================================
# Page: Summary
# ============================================================================
def page_summary(view: board_view.ViewFilter):
    st.header("📊 Summary")

    replica = get_replica()
    visible = replica.visible(view)
    summary = board_view.summarize(visible)

    col1, col2, col3 = st.columns(3)
    col1.metric("Total Trips", summary.total_trips)
    col2.metric("Items Accepted", summary.items_accepted)
    col3.metric("Bundle Weight (lbs)", summary.weight_display)

    st.subheader("By bucket")
    st.bar_chart({bucket.value: count for bucket, count in board_view.bucket_counts(visible).items()})

    st.subheader("By assignee")
    for name, count in board_view.assignee_counts(visible).items():
        st.write(f"- **{name}**: {count}")


# ============================================================================
# Main App
# ============================================================================
def main():
    st.sidebar.title("📦 Bundle Board")
    st.sidebar.write(get_config().board.api_base_url)

    page = st.sidebar.radio("Navigate", options=["Board", "Upload CSV", "Summary"], index=0)

    st.sidebar.divider()

    try:
        view = sidebar_filter()
    except ValueError as e:
        st.sidebar.error(str(e))
        view = board_view.ViewFilter()

    if st.sidebar.button("🔄 Refresh"):
        refresh()
    if "last_sync" in st.session_state:
        st.sidebar.caption(f"Last sync: {st.session_state['last_sync']}")

    if page == "Board":
        page_board(view)
    elif page == "Upload CSV":
        page_upload()
    elif page == "Summary":
        page_summary(view)


if __name__ == "__main__":
    main()
