"""
app.py
Streamlit admin dashboard for members, certifications, groups, audit log and card printing.
Run: streamlit run app.py
"""

from __future__ import annotations

import logging

import streamlit as st

import audit
import auth
import certification
import db
import groups
import members
import print_queue
import utils
from config import settings
from errors import AuthorizationDenied, DashboardError, NotFound, QueueFailed, QueueTimeout
from logging_setup import setup_logging
from models import ActorContext
from privileges import (
    PRIVILEGE_LABELS,
    PrivilegeLevel,
    can_access_dashboard,
    can_ban_members,
    can_bulk_temporary_passwords,
    can_delete_members,
    can_edit_privileges,
    can_manage_certificates,
    can_manage_members,
    can_manage_membership_status,
    can_reset_password_for_target,
    can_view_audit_logs,
    max_assignable,
)

logger = logging.getLogger(__name__)

st.set_page_config(page_title="Medlemsadmin", layout="wide")


@st.cache_resource
def init_once():
    # Logging + DB + bootstrap admin, once per server process
    setup_logging({"root": {"level": settings.log_level.upper()}})
    settings.validate_runtime()
    db.init_db(settings.bootstrap_admin_email, auth.hash_password(settings.bootstrap_admin_password))
    return True


def require_login():
    if "user_id" not in st.session_state:
        st.session_state.user_id = None


def logout():
    st.session_state.user_id = None
    st.success("Logget ut.")


def current_actor() -> ActorContext | None:
    # Re-read every run so privilege changes apply immediately
    if not st.session_state.user_id:
        return None
    try:
        return members.load_actor(st.session_state.user_id)
    except (NotFound, AuthorizationDenied):
        st.session_state.user_id = None
        return None


def login_screen():
    st.title("🔐 Logg inn")

    col1, col2 = st.columns([1, 1])
    with col1:
        email = st.text_input("E-post", value=settings.bootstrap_admin_email)
        password = st.text_input("Passord", type="password")
        if st.button("Logg inn", type="primary"):
            actor = auth.login(email.strip(), password)
            if actor is None:
                st.error("Feil e-post eller passord.")
            elif not can_access_dashboard(actor.privilege):
                st.error("Du har ikke tilgang til dashbordet.")
            else:
                st.session_state.user_id = actor.user_id
                st.rerun()

    with col2:
        st.info(
            "Første oppstart oppretter en IT-administrator:\n\n"
            f"- e-post: **{settings.bootstrap_admin_email}**\n"
            "- passord: fra DASHBOARD_BOOTSTRAP_ADMIN_PASSWORD\n\n"
            "Du må bytte passord ved første innlogging."
        )


def force_change_password_screen(actor: ActorContext):
    st.title("⚠️ Bytt passord")

    st.warning("Du må velge et eget passord før du kan fortsette.")
    new1 = st.text_input("Nytt passord", type="password")
    new2 = st.text_input("Bekreft nytt passord", type="password")

    if st.button("Oppdater passord", type="primary"):
        if len(new1) < 8:
            st.error("Passordet må ha minst 8 tegn.")
            return
        if new1 != new2:
            st.error("Passordene er ikke like.")
            return
        auth.change_password(actor.user_id, new1)
        st.success("Passord oppdatert.")
        st.rerun()


def report_bulk(result: members.BulkResult):
    if result.status == "ok":
        st.success(result.summary())
    elif result.status == "partial":
        st.warning(result.summary())
    else:
        st.error(result.summary())
    for member_id, message in result.failed.items():
        st.caption(f"{member_id}: {message}")


def run_card_print(actor: ActorContext, member_ids: list[str]):
    batch = print_queue.print_member_cards(actor, member_ids)
    for member_id, message in batch.failed.items():
        st.error(f"Kunne ikke legge til i utskriftskø ({member_id}): {message}")

    for queue_id, member_id in batch.queued:
        handle = print_queue.watch(
            queue_id,
            member_id,
            actor.user_id,
            timeout_error_message=settings.print_timeout_error_message,
        )
        with st.spinner(f"Skriver ut kort (jobb {queue_id})..."):
            try:
                print_queue.wait_for_print(handle)
                st.success(f"Kort skrevet ut (jobb {queue_id}).")
            except QueueFailed as exc:
                st.error(f"Utskrift feilet: {exc}")
            except QueueTimeout as exc:
                st.warning(str(exc))


# ---------- Pages ----------

def dashboard_page(actor: ActorContext):
    st.header("📊 Oversikt")

    total_active = db.fetch_one(
        "SELECT COUNT(*) AS c FROM members WHERE is_membership_active = 1 AND is_banned = 0"
    )["c"]
    volunteers = db.fetch_one(
        "SELECT COUNT(*) AS c FROM members WHERE privilege_type >= ? AND is_banned = 0",
        (int(PrivilegeLevel.VOLUNTEER),),
    )["c"]
    pending_prints = db.fetch_one(
        "SELECT COUNT(*) AS c FROM printer_queue WHERE completed = 0 AND error_msg IS NULL"
    )["c"]
    pending_apps = db.fetch_one(
        "SELECT COUNT(*) AS c FROM certification_application WHERE verified = 0 AND rejected = 0"
    )["c"]

    c1, c2, c3, c4 = st.columns(4)
    c1.metric("Aktive medlemmer", int(total_active))
    c2.metric("Frivillige", int(volunteers))
    c3.metric("Ventende utskrifter", int(pending_prints))
    c4.metric("Ubehandlede søknader", int(pending_apps))

    st.divider()
    st.subheader("Siste utskrifter")
    entries = print_queue.list_queue(actor, limit=10)
    if entries:
        st.dataframe(utils.queue_to_frame(entries), use_container_width=True, hide_index=True)
    else:
        st.caption("Ingen utskrifter ennå.")


def add_member_form(actor: ActorContext):
    st.subheader("➕ Nytt medlem")
    col1, col2, col3 = st.columns(3)
    with col1:
        firstname = st.text_input("Fornavn")
        lastname = st.text_input("Etternavn")
    with col2:
        email = st.text_input("E-post")
        voluntary = st.checkbox("Frivillig", value=False)
    with col3:
        auto_print = st.checkbox("Skriv ut kort automatisk", value=True)

    errors = utils.validate_member_inputs(firstname, lastname, email) if any([firstname, lastname, email]) else []
    for e in errors:
        st.error(e)

    c1, c2 = st.columns(2)
    with c1:
        if st.button("Opprett", type="primary", disabled=bool(errors) or not email):
            existing = members.find_member_by_email(email)
            if existing is not None:
                st.error("E-posten er allerede registrert. Bruk «Aktiver» for inaktive medlemskap.")
                return
            member = members.create_member(actor, firstname, lastname, email, voluntary)
            st.success(f"Medlem {member.full_name} opprettet.")
            if auto_print:
                run_card_print(actor, [member.id])
    with c2:
        if st.button("Aktiver eksisterende", disabled=not email):
            member = members.activate_member(actor, email, voluntary)
            st.success(f"Medlemskap for {member.full_name} aktivert.")
            if auto_print:
                run_card_print(actor, [member.id])


def member_actions(actor: ActorContext, selected: list[str]):
    st.subheader(f"Handlinger ({len(selected)} valgt)")

    if can_edit_privileges(actor.privilege):
        ceiling = max_assignable(actor.privilege)
        options = [lvl for lvl in PrivilegeLevel if ceiling is not None and lvl <= ceiling]
        level = st.selectbox("Tilgangsnivå", options, format_func=lambda lvl: PRIVILEGE_LABELS[lvl])
        if st.button("Sett tilgang"):
            report_bulk(members.set_privilege(actor, selected, level))

    c1, c2, c3 = st.columns(3)
    with c1:
        if st.button("Skriv ut kort"):
            run_card_print(actor, selected)
        if can_manage_membership_status(actor.privilege):
            if st.button("Aktiver medlemskap"):
                report_bulk(members.set_membership_status(actor, selected, True))
            if st.button("Deaktiver medlemskap"):
                report_bulk(members.set_membership_status(actor, selected, False))
        if can_bulk_temporary_passwords(actor.privilege) and st.button("Send engangspassord"):
            result, passwords = members.bootstrap_passwords(actor, selected)
            report_bulk(result)
            for member_id, temporary in passwords.items():
                st.info(f"Engangspassord for {member_id}: `{temporary}` (vises kun nå)")

    with c2:
        if len(selected) == 1:
            target = members.get_member(selected[0])
            if can_manage_members(actor.privilege):
                with st.popover("Endre navn"):
                    first = st.text_input("Fornavn", value=target.firstname, key="rename_first")
                    last = st.text_input("Etternavn", value=target.lastname, key="rename_last")
                    if st.button("Lagre navn"):
                        members.update_name(actor, target.id, first, last)
                        st.success("Navn oppdatert.")
            if can_reset_password_for_target(actor.privilege, target.privilege) and st.button("Tilbakestill passord"):
                temporary = members.reset_password(actor, target.id)
                st.info(f"Engangspassord for {target.email}: `{temporary}` (vises kun nå)")
            if can_ban_members(actor.privilege):
                if target.is_banned:
                    if st.button("Opphev utestenging"):
                        members.unban_member(actor, target.id)
                        st.success("Utestenging opphevet.")
                elif st.button("Utesteng"):
                    members.ban_member(actor, target.id)
                    st.success("Bruker utestengt.")

    with c3:
        if can_delete_members(actor.privilege):
            confirm = st.checkbox("Bekreft sletting", value=False, key="del_confirm")
            if st.button("Slett", type="secondary", disabled=not confirm):
                report_bulk(members.delete_members(actor, selected))


def members_page(actor: ActorContext):
    st.header("👥 Medlemmer")

    with st.sidebar:
        st.subheader("Søk og filter")
        search = st.text_input("Søk (navn/e-post)")
        status = st.selectbox("Status", ["All", "active", "inactive", "banned"])

    rows = members.list_members(actor, search=search, status=status)
    df = utils.members_to_frame(rows)
    st.dataframe(df, use_container_width=True, hide_index=True)
    st.download_button(
        "Last ned members.csv",
        data=utils.members_to_csv_bytes(rows),
        file_name="members.csv",
        mime="text/csv",
    )

    st.divider()

    labels = {f"{m.full_name} <{m.email}>": m.id for m in rows}
    chosen = st.multiselect("Velg medlemmer", list(labels.keys()))
    selected = [labels[c] for c in chosen]
    if selected:
        member_actions(actor, selected)

    st.divider()
    if can_manage_members(actor.privilege):
        add_member_form(actor)


def queue_page(actor: ActorContext):
    st.header("🖨️ Utskriftskø")
    entries = print_queue.list_queue(actor, limit=200)
    if entries:
        st.dataframe(utils.queue_to_frame(entries), use_container_width=True, hide_index=True)
    else:
        st.caption("Køen er tom.")
    if st.button("Oppdater"):
        st.rerun()


def certification_page(actor: ActorContext):
    st.header("📜 Sertifisering")
    st.caption(
        "Søkere kan kun ha én aktiv søknad om gangen. "
        "For å søke på nytt etter et avslag må den tidligere søknaden slettes."
    )
    unprocessed, processed = certification.list_applications(actor)

    tab1, tab2 = st.tabs([f"Ubehandlet ({len(unprocessed)})", f"Behandlet ({len(processed)})"])
    with tab1:
        if not unprocessed:
            st.caption("Ingen ubehandlede søknader.")
        for a in unprocessed:
            c1, c2, c3 = st.columns([3, 1, 1])
            c1.write(f"**{a.seeker_name}** · {a.certificate_type or 'ukjent'} · {a.created_at}")
            if c2.button("Godkjenn", key=f"acc_{a.id}"):
                certification.accept_application(actor, a.id)
                st.rerun()
            if c3.button("Avslå", key=f"rej_{a.id}"):
                certification.reject_application(actor, a.id)
                st.rerun()
    with tab2:
        if not processed:
            st.caption("Ingen behandlede søknader.")
        for a in processed:
            c1, c2 = st.columns([4, 1])
            verdict = "Godkjent" if a.verified else "Avslått"
            c1.write(f"**{a.seeker_name}** · {a.certificate_type or 'ukjent'} · {verdict}")
            if c2.button("Slett", key=f"del_{a.id}"):
                certification.delete_application(actor, a.id)
                st.rerun()


def groups_page(actor: ActorContext):
    st.header("🧭 Aktivitetsgrupper")
    rows = groups.list_groups(actor)
    if not rows:
        st.caption("Ingen grupper.")
    for g in rows:
        with st.container(border=True):
            st.subheader(g.name)
            if g.description:
                st.write(g.description)
            st.caption(f"Gruppeleder: {g.leader_name}")


def audit_page(actor: ActorContext):
    st.header("🧾 Revisjonslogg")
    action = st.selectbox("Hendelse", ["(alle)"] + list(audit.ACTION_LABELS.keys()))
    entries = audit.list_audit_log(actor, limit=500, action=None if action == "(alle)" else action)
    st.dataframe(audit.audit_to_frame(entries), use_container_width=True, hide_index=True)
    st.download_button(
        "Last ned audit.csv",
        data=audit.audit_to_csv_bytes(entries),
        file_name="audit.csv",
        mime="text/csv",
    )


def settings_page(actor: ActorContext):
    st.header("⚙️ Innstillinger")

    st.subheader("Bytt passord")
    p1 = st.text_input("Nytt passord", type="password")
    p2 = st.text_input("Bekreft nytt passord", type="password")
    if st.button("Oppdater passord", type="primary"):
        if len(p1) < 8:
            st.error("Passordet må ha minst 8 tegn.")
        elif p1 != p2:
            st.error("Passordene er ikke like.")
        else:
            auth.change_password(actor.user_id, p1)
            st.success("Passord oppdatert.")

    if actor.privilege is PrivilegeLevel.IT:
        st.divider()
        st.subheader("Eksempeldata")
        st.caption("Legger inn noen medlemmer, søknader og grupper for testing.")
        if st.button("Legg inn eksempeldata"):
            utils.insert_sample_data(created_by=actor.user_id)
            st.success("Eksempeldata lagt inn.")
            st.rerun()


def main_app(actor: ActorContext):
    st.sidebar.title("🛶 Medlemsadmin")
    st.sidebar.caption(f"Innlogget som: {actor.user_id} ({PRIVILEGE_LABELS.get(actor.privilege, '?')})")

    pages = {"Oversikt": dashboard_page, "Medlemmer": members_page, "Utskriftskø": queue_page}
    if can_manage_certificates(actor.privilege):
        pages["Sertifisering"] = certification_page
    pages["Grupper"] = groups_page
    if can_view_audit_logs(actor.privilege):
        pages["Revisjonslogg"] = audit_page
    pages["Innstillinger"] = settings_page

    names = list(pages.keys())
    if st.session_state.get("page") not in names:
        st.session_state.page = names[0]
    st.session_state.page = st.sidebar.radio("Naviger", names, index=names.index(st.session_state.page))

    if st.sidebar.button("Logg ut"):
        logout()
        st.rerun()

    try:
        pages[st.session_state.page](actor)
    except AuthorizationDenied as exc:
        st.error(str(exc))
    except DashboardError as exc:
        logger.info("Action failed: %s", exc)
        st.error(str(exc))


# --------- App entry ---------

def run():
    init_once()
    require_login()

    actor = current_actor()
    if actor is None:
        login_screen()
        return

    if not can_access_dashboard(actor.privilege):
        st.error("Du har ikke tilgang til dashbordet.")
        logout()
        return

    # Bootstrap admin and temporary passwords must be replaced first
    if auth.needs_password_change(actor.user_id):
        force_change_password_screen(actor)
        return

    main_app(actor)


if __name__ == "__main__":
    run()
