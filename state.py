"""Session state and the command boundary.

The UI never mutates store data directly: it calls ``dispatch`` with a
command, and renders whatever ``AppState`` holds. Live subscriptions
replace the cached slices wholesale on every snapshot. The callbacks are
bound methods of ``AppState``, so the store holds them weakly and a session
that expires without logging out leaves nothing subscribed behind.
"""
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

from pydantic import ValidationError as PydanticValidationError

import wallet
from auth import SessionUser
from chat import threads_for
from db import MESSAGES, RIDE_REQUESTS, RIDES, WALLETS, DocumentStore, Snapshot, Subscription
from errors import MarketplaceError
from marketplace import load_profile, register
from models import ChatListEntry, ChatThread, Ride, RideRequest, UserProfile, WalletBalance

logger = logging.getLogger(__name__)

DRIVER_VIEWS = ["Home", "Post Ride", "My Rides", "Find Riders", "Messages", "Wallet"]
RIDER_VIEWS = ["Home", "Search Rides", "Post Request", "My Requests", "Messages", "Wallet"]


@dataclass
class Notification:
    level: str  # success | info | error
    message: str


@dataclass
class AppState:
    user: Optional[SessionUser] = None
    profile: Optional[UserProfile] = None
    view: str = "login"
    rides: Tuple[Ride, ...] = ()
    requests: Tuple[RideRequest, ...] = ()
    wallet: WalletBalance = field(default_factory=WalletBalance)
    threads: Dict[str, ChatThread] = field(default_factory=dict)
    active_chat: Optional[ChatListEntry] = None
    notification: Optional[Notification] = None
    subscriptions: List[Subscription] = field(default_factory=list)

    def notify(self, message: str, level: str = "success"):
        self.notification = Notification(level, message)

    def pop_notification(self) -> Optional[Notification]:
        note, self.notification = self.notification, None
        return note

    @property
    def views(self) -> List[str]:
        if self.profile is None:
            return []
        return DRIVER_VIEWS if self.profile.is_driver else RIDER_VIEWS

    # Snapshot callbacks

    def replace_rides(self, snapshot: Snapshot):
        self.rides = tuple(decode(Ride, snapshot))

    def replace_requests(self, snapshot: Snapshot):
        self.requests = tuple(decode(RideRequest, snapshot))

    def replace_wallet(self, snapshot: Snapshot):
        mine = [w for w in decode(WalletBalance, snapshot) if self.user and w.owner_id == self.user.id]
        if mine:
            self.wallet = mine[0]

    def replace_threads(self, snapshot: Snapshot):
        if self.user:
            self.threads = threads_for(decode(ChatThread, snapshot), self.user.id)


def dispatch(state: AppState, command: Callable, *args, success: str = None, **kwargs):
    """Run one command; any domain error becomes a single notification."""
    try:
        result = command(*args, **kwargs)
    except MarketplaceError as e:
        logger.warning("%s failed: %s", getattr(command, "__name__", command), e)
        state.notify(str(e), level="error")
        return None
    if success:
        state.notify(success)
    return result


# ===========================
# LIVE DATA
# ===========================
def decode(model_cls, snapshot: Snapshot) -> list:
    out = []
    for doc in snapshot:
        try:
            out.append(model_cls.from_document(doc))
        except PydanticValidationError as e:
            logger.warning("Skipping malformed %s %s: %s", model_cls.__name__, doc.id, e)
    return out


def attach(state: AppState, store: DocumentStore):
    """Subscribe the session to the shared catalogs and its own wallet and chats."""
    detach(state)
    state.rides, state.requests, state.threads = (), (), {}
    state.wallet = wallet.get_wallet(store, state.user.id)
    state.subscriptions = [
        store.subscribe(RIDES, state.replace_rides),
        store.subscribe(RIDE_REQUESTS, state.replace_requests),
        store.subscribe(WALLETS, state.replace_wallet),
        store.subscribe(MESSAGES, state.replace_threads),
    ]


def detach(state: AppState):
    for sub in state.subscriptions:
        sub.cancel()
    state.subscriptions = []


def enter_session(state: AppState, store: DocumentStore, user: SessionUser):
    """Route a signed-in user to registration or home."""
    state.user = user
    store.authenticate(user.access_token)
    state.profile = load_profile(store, user.id)
    if state.profile is None:
        state.view = "register"
        return
    state.view = "Home"
    attach(state, store)


def complete_registration(state: AppState, store: DocumentStore, form) -> UserProfile:
    profile = register(store, state.user.id, form)
    state.profile = profile
    state.view = "Home"
    attach(state, store)
    return profile


def leave_session(state: AppState):
    detach(state)
    state.user, state.profile, state.active_chat = None, None, None
    state.rides, state.requests, state.threads = (), (), {}
    state.wallet = WalletBalance()
    state.view = "login"


# ===========================
# PROJECTIONS
# ===========================
def rides_of(state: AppState) -> List[Ride]:
    return [r for r in state.rides if state.profile and r.driver_id == state.profile.id]


def requests_for_ride(state: AppState, ride_id: str) -> List[RideRequest]:
    return [r for r in state.requests if r.ride_id == ride_id]


def my_requests(state: AppState, active_only: bool = False) -> List[RideRequest]:
    out = [r for r in state.requests if state.profile and r.rider_id == state.profile.id]
    return [r for r in out if r.is_active] if active_only else out
