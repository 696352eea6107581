import logging
from datetime import datetime
from decimal import Decimal

import streamlit as st
from streamlit.errors import StreamlitAPIException
from supabase import create_client

import chat
import config
import marketplace
import suggestions
import wallet
from auth import LocalIdentity, SupabaseIdentity
from db import create_store
from errors import MarketplaceError
from matching import search_open_requests, search_rides
from models import ChatListEntry, OpenRequestDraft, RegistrationForm, RideDraft, SearchCriteria, Vehicle
from state import (
    AppState,
    complete_registration,
    dispatch,
    enter_session,
    leave_session,
    my_requests,
    requests_for_ride,
    rides_of,
)
from utils import combine_departure, format_departure, format_money

# ===========================
# CONFIG / INIT
# ===========================
st.set_page_config(page_title="RideShare", layout="centered")


def _secrets() -> dict:
    try:
        return dict(st.secrets)
    except (FileNotFoundError, StreamlitAPIException):
        return {}


SECRETS = _secrets()
logging.basicConfig(
    level=config.get_setting("LOG_LEVEL", config.LOG_LEVEL, SECRETS),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

BACKEND = config.get_setting("STORE_BACKEND", config.STORE_BACKEND, SECRETS)
APP_ID = config.get_setting("APP_ID", config.APP_ID, SECRETS)
SUPABASE_URL = config.get_setting("SUPABASE_URL", config.SUPABASE_URL, SECRETS)
SUPABASE_KEY = config.get_setting("SUPABASE_KEY", config.SUPABASE_KEY, SECRETS)
GEMINI_API_KEY = config.get_setting("GEMINI_API_KEY", config.GEMINI_API_KEY, SECRETS)

if BACKEND != "memory" and (not SUPABASE_URL or not SUPABASE_KEY):
    st.error(
        "Missing Supabase secrets. Add SUPABASE_URL and SUPABASE_KEY in Streamlit Cloud Secrets, "
        "or set STORE_BACKEND=memory for a local demo."
    )
    st.stop()


@st.cache_resource
def shared_memory_store():
    """The local demo store is shared by every session of the process."""
    return create_store("memory", APP_ID)


def get_backend():
    """Store and identity provider for this browser session.

    Each Supabase session gets its own client, so signing in on it also
    authorizes the session's document queries.
    """
    if BACKEND == "memory":
        return shared_memory_store(), LocalIdentity()
    if "backend" not in st.session_state:
        client = create_client(SUPABASE_URL, SUPABASE_KEY)
        store = create_store(
            "supabase", APP_ID,
            table=config.get_setting("DOCUMENTS_TABLE", config.DOCUMENTS_TABLE, SECRETS),
            client=client,
        )
        st.session_state.backend = (store, SupabaseIdentity(client))
    return st.session_state.backend


store, identity = get_backend()

if "app" not in st.session_state:
    st.session_state.app = AppState()
app: AppState = st.session_state.app
dispatch(app, store.refresh)


def show_notification():
    note = app.pop_notification()
    if note is None:
        return
    {"success": st.success, "info": st.info}.get(note.level, st.error)(note.message)


def run(command, *args, success=None, **kwargs):
    """Dispatch a command and rerun so the notification and fresh data render."""
    dispatch(app, command, *args, success=success, **kwargs)
    st.rerun()


# ===========================
# AUTH
# ===========================
def sign_in(action: str, email: str = "", password: str = ""):
    if action == "Guest":
        user = identity.sign_in_anonymously()
    elif action == "Login":
        user = identity.sign_in(email, password)
    else:
        user = identity.sign_up(email, password)
    enter_session(app, store, user)


def show_login():
    st.title("Login or Register")
    email = st.text_input("Email")
    password = st.text_input("Password", type="password")
    action = st.radio("Action", ["Login", "Register"])
    col1, col2 = st.columns(2)
    if col1.button(action):
        run(sign_in, action, email, password, success=f"{action} successful!")
    if col2.button("Continue as guest"):
        run(sign_in, "Guest")


def show_register():
    st.title("Register for RideShare")
    st.caption(f"Your User ID: {app.user.id}")
    role = st.radio("I am a", ["rider", "driver"], horizontal=True)
    with st.form("register_form"):
        name = st.text_input("Full Name")
        email = st.text_input("Email", value=app.user.email or "")
        phone = st.text_input("Phone")
        vehicle = Vehicle()
        license_file = id_file = None
        if role == "driver":
            vehicle = Vehicle(
                type=st.text_input("Vehicle type"),
                color=st.text_input("Vehicle color"),
                plate=st.text_input("License plate"),
            )
            license_file = st.file_uploader("Driver's license")
        else:
            id_file = st.file_uploader("Government ID")
        submit = st.form_submit_button("Register")
    if submit:
        form = RegistrationForm(
            name=name, email=email, phone=phone, role=role, vehicle=vehicle,
            license_uploaded=license_file is not None, id_uploaded=id_file is not None,
        )
        run(complete_registration, app, store, form,
            success="Registration successful! Your profile is pending verification.")


if app.user is None:
    show_notification()
    show_login()
    st.stop()

if app.profile is None:
    show_notification()
    show_register()
    st.stop()

# ===========================
# SIDEBAR
# ===========================
profile = app.profile
st.sidebar.title(f"Welcome, {profile.name}")
st.sidebar.caption(f"{profile.role.title()} · verification {profile.verification_status}")
st.sidebar.metric("Wallet", format_money(app.wallet.balance))
choice = st.sidebar.radio("Menu", app.views)
if st.sidebar.button("Refresh"):
    st.rerun()
if st.sidebar.button("Log out"):
    dispatch(app, identity.sign_out)
    leave_session(app)
    st.rerun()

show_notification()


# ===========================
# VIEWS
# ===========================
def ride_card(ride):
    st.markdown(f"**{ride.origin} → {ride.destination}**")
    st.write(f"🕒 {ride.start_time} · 💺 {ride.available_seats} seats · {format_money(ride.price_per_seat)}/seat")
    st.caption(" → ".join(ride.route) + f" · {ride.vehicle.color} {ride.vehicle.type} ({ride.vehicle.plate})")


def show_home():
    st.title("Welcome 🎉")
    st.write(f"👤 Name: {profile.name}")
    st.write(f"📧 {profile.email} · 📞 {profile.phone}")
    if profile.vehicle:
        st.write(f"🚗 Car: {profile.vehicle.color} {profile.vehicle.type} ({profile.vehicle.plate})")
    st.write(f"💰 Balance: {format_money(app.wallet.balance)}")


def show_post_ride():
    st.title("Post a New Ride")
    if "suggested_price" in st.session_state:
        st.session_state.ride_price = st.session_state.pop("suggested_price")
    with st.form("ride_form"):
        origin = st.text_input("From", key="ride_origin")
        destination = st.text_input("To", key="ride_destination")
        stops = st.text_area("Stops along the way (one per line)")
        day = st.date_input("Date", value=datetime.today())
        at = st.time_input("Start time", key="ride_time")
        seats = st.number_input("Available seats", 1, 8, 1)
        price = st.number_input("Price per seat", 0.0, 1000.0, step=1.0, key="ride_price")
        col1, col2 = st.columns(2)
        submit = col1.form_submit_button("Post Ride")
        suggest = col2.form_submit_button("✨ Suggest price")
    if suggest:
        suggested = dispatch(
            app, suggestions.suggest_price, origin, destination,
            format_departure(combine_departure(day, at)), api_key=GEMINI_API_KEY,
        )
        if suggested:
            st.session_state.suggested_price = float(suggested)
            app.notify(f"Suggested price: ${suggested}. You can adjust it.", level="info")
        st.rerun()
    if submit:
        draft = RideDraft(
            origin=origin, destination=destination, start_time=combine_departure(day, at),
            available_seats=int(seats), price_per_seat=Decimal(str(price)), stops=stops.splitlines(),
        )
        run(marketplace.post_ride, store, profile, draft, success="Ride posted successfully!")


def show_search_rides():
    st.title("Search Rides")
    with st.form("search_form"):
        origin = st.text_input("From")
        destination = st.text_input("To")
        stops = st.text_area("Points along your route (one per line)")
        st.form_submit_button("Search")
    criteria = SearchCriteria(origin=origin, destination=destination, stops=stops.splitlines())
    results = search_rides(app.rides, criteria)
    if not results:
        st.info("No rides match your search.")
    for ride in results:
        with st.container(border=True):
            ride_card(ride)
            st.caption(f"Driver: {ride.driver_name}")
            col1, col2 = st.columns(2)
            if col1.button("Request ride", key=f"req-{ride.id}"):
                run(marketplace.request_ride, store, profile, ride.id,
                    success="Ride request sent successfully! Driver will be notified.")
            if col2.button("Message driver", key=f"msg-{ride.id}"):
                thread = dispatch(app, marketplace.start_chat, store, profile, ride.id)
                if thread:
                    app.active_chat = ChatListEntry(
                        thread_id=thread.id, name=ride.driver_name,
                        ride_info=f"{ride.origin} to {ride.destination}",
                        last_message=chat.NO_MESSAGES, partner_id=ride.driver_id,
                    )
                    app.notify("Open 'Messages' to continue the conversation.", level="info")
                st.rerun()


def show_my_rides():
    st.title("My Posted Rides")
    rides = rides_of(app)
    if not rides:
        st.info("You have not posted any rides yet.")
    for ride in rides:
        with st.container(border=True):
            ride_card(ride)
            st.caption(f"Status: {ride.status}")
            for req in requests_for_ride(app, ride.id):
                st.write(f"🙋 {req.rider_name}: {req.status} · {format_money(req.price or 0)}")
                cols = st.columns(3)
                if req.status == "pending":
                    if cols[0].button("Accept", key=f"acc-{req.id}"):
                        run(marketplace.accept_request, store, profile, req.id, success="Ride request accepted!")
                    if cols[1].button("Reject", key=f"rej-{req.id}"):
                        run(marketplace.reject_request, store, profile, req.id, success="Ride request rejected.")
                elif req.status == "accepted":
                    if cols[0].button("Complete ride", key=f"done-{req.id}"):
                        run(marketplace.complete_ride, store, profile, ride.id, req.rider_id, req.price,
                            success="Ride marked as completed and payment processed!")


def show_find_riders():
    st.title("Find Riders")
    with st.form("find_riders_form"):
        origin = st.text_input("From")
        destination = st.text_input("To")
        stops = st.text_area("Points along your route (one per line)")
        st.form_submit_button("Search")
    criteria = SearchCriteria(origin=origin, destination=destination, stops=stops.splitlines())
    open_requests = search_open_requests(app.requests, criteria)
    if not open_requests:
        st.info("No open ride requests match.")
    for req in open_requests:
        with st.container(border=True):
            st.markdown(f"**{req.origin} → {req.destination}**")
            st.write(f"🙋 {req.rider_name} · 🕒 {req.preferred_time} · max {format_money(req.max_price or 0)}")
            if st.button("Contact rider", key=f"contact-{req.id}"):
                thread = dispatch(app, marketplace.contact_rider, store, profile, req.id)
                if thread:
                    app.active_chat = ChatListEntry(
                        thread_id=thread.id, name=req.rider_name,
                        ride_info=f"Request: {req.origin} to {req.destination}",
                        last_message=chat.NO_MESSAGES, partner_id=req.rider_id,
                    )
                    app.notify("Open 'Messages' to continue the conversation.", level="info")
                st.rerun()


def show_post_request():
    st.title("Post Ride Request")
    with st.form("request_form"):
        origin = st.text_input("From")
        destination = st.text_input("To")
        stops = st.text_area("Stops along the way (one per line)")
        day = st.date_input("Preferred date", value=datetime.today())
        at = st.time_input("Preferred time")
        max_price = st.number_input("Max price", 0.0, 1000.0, step=1.0)
        col1, col2 = st.columns(2)
        submit = col1.form_submit_button("Post Request")
        refine = col2.form_submit_button("✨ Refine request")
    draft = OpenRequestDraft(
        origin=origin, destination=destination, preferred_time=combine_departure(day, at),
        max_price=Decimal(str(max_price)), stops=stops.splitlines(),
    )
    if submit:
        run(marketplace.post_open_request, store, profile, draft,
            success="Ride request posted! Drivers will be notified.")
    if refine:
        text = dispatch(app, suggestions.refine_request, draft.origin, draft.destination,
                        draft.preferred_time, draft.max_price, api_key=GEMINI_API_KEY)
        if text:
            st.session_state.refinement = text
    if st.session_state.get("refinement"):
        st.info(st.session_state.refinement)


def show_my_requests():
    st.title("My Ride Requests")
    active_only = st.checkbox("Active only", value=True)
    requests = my_requests(app, active_only=active_only)
    if not requests:
        st.info("No ride requests.")
    for req in requests:
        with st.container(border=True):
            st.markdown(f"**{req.origin} → {req.destination}** · {req.status}")
            when = req.ride_start_time or req.preferred_time
            price = req.price if req.price is not None else req.max_price
            st.write(f"🕒 {when} · {format_money(price or 0)}" + (f" · Driver: {req.driver_name}" if req.driver_name else ""))
            if req.status == "pending" and st.button("Cancel request", key=f"cancel-{req.id}"):
                run(marketplace.cancel_request, store, profile, req.id, success="Ride request cancelled.")


@st.fragment(run_every=config.POLL_INTERVAL_SECONDS)
def show_conversation():
    dispatch(app, store.refresh)
    active = app.active_chat
    thread = app.threads.get(active.thread_id)
    for msg in thread.messages if thread else []:
        with st.chat_message("user" if msg.sender_id == profile.id else "assistant"):
            st.write(f"**{msg.sender_name}**: {msg.text}")
            st.caption(msg.timestamp)


def show_messages():
    st.title("Messages")
    if app.active_chat:
        active = app.active_chat
        if st.button("← Back"):
            app.active_chat = None
            st.rerun()
        st.subheader(f"{active.name} · {active.ride_info}")
        show_conversation()
        text = st.chat_input("Type a message")
        if text:
            run(chat.send_message, store, profile, active.thread_id, text, active.partner_id)
        return
    entries = chat.chat_list(profile, app.rides, app.requests, app.threads)
    if not entries:
        st.info("No conversations yet.")
    for entry in entries:
        with st.container(border=True):
            st.markdown(f"**{entry.name}** · {entry.ride_info}")
            st.caption(entry.last_message)
            if st.button("Open", key=f"open-{entry.thread_id}"):
                app.active_chat = entry
                st.rerun()


def show_wallet():
    st.title("My Wallet")
    st.metric("Current Balance", format_money(app.wallet.balance))
    amount = st.text_input("Amount")
    col1, col2 = st.columns(2)
    if col1.button("Add funds"):
        run(wallet.deposit, store, profile.id, amount, success="Funds added to your wallet.")
    if col2.button("Withdraw"):
        run(wallet.withdraw, store, profile.id, amount, success="Funds withdrawn from your wallet.")


VIEWS = {
    "Home": show_home,
    "Post Ride": show_post_ride,
    "My Rides": show_my_rides,
    "Find Riders": show_find_riders,
    "Search Rides": show_search_rides,
    "Post Request": show_post_request,
    "My Requests": show_my_requests,
    "Messages": show_messages,
    "Wallet": show_wallet,
}

try:
    VIEWS[choice]()
except MarketplaceError as e:
    st.error(str(e))
