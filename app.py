"""
app.py
Streamlit staff console for gym memberships.
Run: streamlit run app.py
"""

from __future__ import annotations

from datetime import date

import streamlit as st

import attendance
import auth
import db
import transitions
import utils
from config import settings
from countdown import refresh_member
from errors import MembershipError
from logging_config import setup_logging
from models import MemberStatus, StatusAction
from sweep import run_daily_reconciliation

st.set_page_config(page_title="Gym Membership Console", layout="wide")

MEMBER_COLUMNS = ["id", "full_name", "phone", "status", "days_left", "start_date", "total_attendance", "plan"]


@st.cache_resource
def init_once():
    setup_logging(debug=settings.DEBUG, json_output=settings.LOG_JSON)
    db.init_db(auth.hash_password(settings.DEFAULT_ADMIN_PASSWORD))
    return True


def require_login():
    if "logged_in" not in st.session_state:
        st.session_state.logged_in = False
    if "username" not in st.session_state:
        st.session_state.username = None


def logout():
    st.session_state.logged_in = False
    st.session_state.username = None
    st.success("Logged out.")


def run_action(fn, *args, success: str | None = None, **kwargs):
    """Call an engine operation and report domain errors in the page."""
    try:
        result = fn(*args, **kwargs)
    except MembershipError as e:
        st.error(str(e))
        return None
    if success:
        st.success(success)
    return result


def login_screen():
    st.title("🔐 Staff Login")

    col1, col2 = st.columns([1, 1])
    with col1:
        username = st.text_input("Username", value="admin")
        password = st.text_input("Password", type="password")
        if st.button("Login", type="primary"):
            if auth.login(username.strip(), password):
                st.session_state.logged_in = True
                st.session_state.username = username.strip()
                st.rerun()
            else:
                st.error("Invalid username or password.")

    with col2:
        st.info(
            "First run creates a default staff account:\n\n"
            "- username: **admin**\n"
            "- password: the configured default\n\n"
            "You will be forced to change it on first login."
        )


def force_change_password_screen():
    st.title("⚠️ Change Password (Required)")

    st.warning("You must change the default password before using the console.")
    new1 = st.text_input("New password", type="password")
    new2 = st.text_input("Confirm new password", type="password")

    if st.button("Update password", type="primary"):
        if len(new1) < 6:
            st.error("Password must be at least 6 characters.")
            return
        if new1 != new2:
            st.error("Passwords do not match.")
            return
        auth.change_password(st.session_state.username, new1)
        st.success("Password updated. You can continue.")
        st.rerun()


def plan_options() -> dict[str, int]:
    return {f"{p.name} ({p.period}d / {p.max_days} visits)": p.id for p in db.list_service_plans()}


def member_options() -> dict[str, int]:
    rows = db.search_members(sort_days_left=False)
    return {f"{r['full_name']} ({r['phone']}) - ID {r['id']}": r["id"] for r in rows}


def dashboard_page():
    st.header("📊 Dashboard")

    counts = db.status_counts()
    cols = st.columns(len(counts))
    for col, (status, n) in zip(cols, counts.items()):
        col.metric(status.capitalize(), n)

    st.divider()

    st.subheader("Close to expiry (3 days or fewer left)")
    rows = db.fetch_all(
        """
        SELECT id, full_name, phone, days_left
        FROM members
        WHERE status='active' AND days_left <= 3
        ORDER BY days_left ASC
        """
    )
    if rows:
        st.dataframe(utils.rows_to_frame(rows), use_container_width=True, hide_index=True)
    else:
        st.caption("Nobody is close to expiry.")

    st.subheader("Unread notifications")
    unread = db.list_notifications(unread_only=True)
    if unread:
        st.dataframe(utils.rows_to_frame(unread), use_container_width=True, hide_index=True)
    else:
        st.caption("No unread notifications.")


def add_member_form():
    st.subheader("➕ Add Member")
    plans = plan_options()
    if not plans:
        st.info("Create a service plan first (Plans page).")
        return

    col1, col2 = st.columns(2)
    with col1:
        full_name = st.text_input("Full name")
        phone = st.text_input("Phone")
    with col2:
        plan_label = st.selectbox("Service plan", list(plans.keys()))

    service_id = plans.get(plan_label)
    errors = utils.validate_member_inputs(full_name, phone, service_id)
    if st.button("Add member", type="primary", disabled=bool(errors)):
        member_id = db.create_member(full_name, phone, service_id)
        st.success(f"Member added as pending (ID {member_id}). Activate them to start the subscription.")
        st.rerun()


def member_actions(member_id: int):
    m = db.get_member(member_id)
    if m is None:
        st.warning("Member not found.")
        return

    st.write(
        f"**{m.full_name}** | Status: **{m.status.value}** | Days left: **{m.days_left}** | "
        f"Start: **{utils.to_iso(m.start_date)}** | Visits: **{m.total_attendance}**"
    )
    if m.freeze_date:
        st.caption(f"Frozen since {utils.to_iso(m.freeze_date)} for {m.freeze_duration} days.")

    c1, c2, c3 = st.columns(3)
    with c1:
        st.markdown("**Change status**")
        action = st.selectbox("Action", [a.value for a in StatusAction], key="status_action")
        start = st.date_input("Start date (activate)", value=date.today(), key="status_start")
        freeze_days = st.number_input("Freeze duration (days)", min_value=1, value=7, step=1, key="freeze_days")
        if st.button("Apply", type="primary"):
            updated = run_action(
                transitions.change_status,
                member_id,
                action,
                start_date=start if action == StatusAction.ACTIVE.value else None,
                freeze_duration=int(freeze_days) if action == StatusAction.FROZEN.value else None,
            )
            if updated:
                st.success(f"Status is now {updated.status.value}.")
                st.rerun()
    with c2:
        st.markdown("**Renew / refresh**")
        if st.button("Renew (back to pending)"):
            if run_action(transitions.renew_member, member_id, success="Member renewed."):
                st.rerun()
        if st.button("Refresh countdown"):
            if run_action(refresh_member, member_id, success="Countdown refreshed."):
                st.rerun()
    with c3:
        st.markdown("**Delete**")
        delete_confirm = st.checkbox("Confirm delete", value=False, key="del_confirm")
        if st.button("Delete", type="secondary", disabled=not delete_confirm):
            db.delete_member(member_id)
            st.success("Member deleted.")
            st.rerun()


def members_page():
    st.header("👥 Members")

    with st.sidebar:
        st.subheader("Search & Filters")
        search = st.text_input("Search (name/phone)")
        status_filter = st.selectbox("Status", ["All"] + [s.value for s in MemberStatus])
        sort_days = st.checkbox("Sort by days left", value=True)

    rows = db.search_members(search=search, status_filter=status_filter, sort_days_left=sort_days)
    df = utils.rows_to_frame(rows, MEMBER_COLUMNS)
    st.dataframe(df, use_container_width=True, hide_index=True)

    st.divider()

    member_ids = df["id"].tolist() if not df.empty else []
    selected_id = st.selectbox("Member ID", options=["(none)"] + [str(i) for i in member_ids])
    if selected_id != "(none)":
        member_actions(int(selected_id))

    st.divider()
    add_member_form()


def attendance_page():
    st.header("✅ Attendance")

    st.subheader("Record check-in")
    raw_id = st.text_input("Member ID (type or scan)")
    if st.button("Record attendance", type="primary"):
        if not raw_id.strip().isdigit():
            st.error("Member ID must be a number.")
        else:
            result = run_action(attendance.record_attendance, int(raw_id.strip()))
            if result:
                (st.warning if result.expired else st.success)(result.message)
                st.caption(f"Total visits: {result.total_attendance} | Days left: {result.days_left}")

    st.divider()

    day = st.date_input("Attendees on", value=date.today())
    rows = attendance.attendees_on(utils.parse_start_date(day, utils.utc_now()))
    if rows:
        st.dataframe(utils.rows_to_frame(rows), use_container_width=True, hide_index=True)
    else:
        st.caption("No attendance recorded for this day.")


def plans_page():
    st.header("📋 Service Plans")

    plans = db.list_service_plans()
    if plans:
        st.dataframe([p.__dict__ for p in plans], use_container_width=True, hide_index=True)
    else:
        st.caption("No plans yet.")

    st.subheader("Add plan")
    c1, c2, c3, c4 = st.columns(4)
    with c1:
        name = st.text_input("Name")
    with c2:
        price = st.text_input("Price", value="300")
    with c3:
        period = st.number_input("Period (days)", min_value=1, value=30, step=1)
    with c4:
        max_days = st.number_input("Max visits", min_value=1, value=12, step=1)

    if st.button("Create plan", type="primary"):
        errors = utils.validate_plan_inputs(name, price, period, max_days)
        if errors:
            for e in errors:
                st.error(e)
        else:
            db.create_service_plan(name, float(price), int(period), int(max_days))
            st.success("Plan created.")
            st.rerun()


def extensions_page():
    st.header("🔁 Subscription Extensions")

    members = member_options()
    plans = plan_options()
    if not members or not plans:
        st.info("Add members and service plans first.")
        return

    st.subheader("Submit request")
    c1, c2 = st.columns(2)
    with c1:
        member_label = st.selectbox("Member", list(members.keys()))
    with c2:
        plan_label = st.selectbox("Service plan", list(plans.keys()))
    if st.button("Request extension"):
        member_id = members[member_label]
        if run_action(transitions.request_extension, member_id, plans[plan_label], success="Request submitted."):
            st.rerun()
    latest = transitions.latest_extension_status(members[member_label])
    if latest:
        st.caption(f"Latest request for this member: {latest.status.value}")

    st.divider()

    st.subheader("Requests")
    rows = db.list_extension_requests()
    if not rows:
        st.caption("No subscription requests found.")
        return
    st.dataframe(utils.rows_to_frame(rows), use_container_width=True, hide_index=True)

    pending = [r["id"] for r in rows if r["status"] == "pending"]
    if not pending:
        return
    c1, c2, c3 = st.columns(3)
    with c1:
        request_id = st.selectbox("Pending request", pending)
    with c2:
        start = st.date_input("Start date", value=date.today(), key="ext_start")
    with c3:
        if st.button("Approve", type="primary"):
            if run_action(transitions.resolve_extension, request_id, "approved", start_date=start, success="Approved."):
                st.rerun()
        if st.button("Reject"):
            if run_action(transitions.resolve_extension, request_id, "rejected", success="Rejected."):
                st.rerun()


def notifications_page():
    st.header("🔔 Notifications")

    rows = db.list_notifications()
    if rows:
        st.dataframe(utils.rows_to_frame(rows), use_container_width=True, hide_index=True)
        if st.button("Mark all as read"):
            db.mark_notifications_read()
            st.rerun()
    else:
        st.caption("No notifications.")


def reports_page():
    st.header("🧾 Reports")

    st.subheader("Export members to CSV")
    members = db.fetch_all("SELECT * FROM members ORDER BY id DESC")
    if members:
        st.download_button(
            "Download members.csv",
            data=utils.rows_to_csv_bytes(members),
            file_name="members.csv",
            mime="text/csv",
        )
    else:
        st.caption("No members to export.")

    st.divider()

    st.subheader("Export attendance to CSV")
    visits = db.all_attendance()
    if visits:
        st.download_button(
            "Download attendance.csv",
            data=utils.rows_to_csv_bytes(visits),
            file_name="attendance.csv",
            mime="text/csv",
        )
    else:
        st.caption("No attendance to export.")

    st.divider()

    st.subheader("Visits by month")
    st.dataframe(utils.attendance_by_month(visits), use_container_width=True, hide_index=True)


def settings_page():
    st.header("⚙️ Settings")

    st.subheader("Change password")
    p1 = st.text_input("New password", type="password")
    p2 = st.text_input("Confirm new password", type="password")
    if st.button("Update password", type="primary"):
        if len(p1) < 6:
            st.error("Password must be at least 6 characters.")
        elif p1 != p2:
            st.error("Passwords do not match.")
        else:
            auth.change_password(st.session_state.username, p1)
            st.success("Password updated.")

    st.divider()

    st.subheader("Daily reconciliation")
    st.caption(
        f"Runs every day at {settings.SWEEP_HOUR:02d}:{settings.SWEEP_MINUTE:02d} "
        f"{settings.SCHEDULER_TIMEZONE} via `python scheduler.py`. Members already reconciled today are skipped."
    )
    if st.button("Run now"):
        report = run_daily_reconciliation()
        st.success(
            f"Processed {report.processed}, updated {report.updated}, skipped {report.skipped}, "
            f"failed {report.failed}, notifications {report.notifications}."
        )

    st.divider()

    st.subheader("Sample data")
    st.caption("Insert 2 plans and 4 members for testing (adds new rows each run).")
    if st.button("Insert sample data"):
        db.insert_sample_data()
        st.success("Sample data inserted.")
        st.rerun()


PAGES = {
    "Dashboard": dashboard_page,
    "Members": members_page,
    "Attendance": attendance_page,
    "Plans": plans_page,
    "Extensions": extensions_page,
    "Notifications": notifications_page,
    "Reports": reports_page,
    "Settings": settings_page,
}


def main_app():
    st.sidebar.title("🏋️ Gym Console")
    st.sidebar.caption(f"Logged in as: {st.session_state.username}")

    pages = list(PAGES)
    if "page" not in st.session_state:
        st.session_state.page = "Dashboard"
    st.session_state.page = st.sidebar.radio("Navigate", pages, index=pages.index(st.session_state.page))

    if st.sidebar.button("Logout"):
        logout()
        st.rerun()

    PAGES[st.session_state.page]()


# --------- App entry ---------

def run():
    init_once()
    require_login()

    if not st.session_state.logged_in:
        login_screen()
        return

    # Force password change on first login after DB creation
    if db.is_force_password_change():
        force_change_password_screen()
        return

    main_app()


if __name__ == "__main__":
    run()
