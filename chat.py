import logging
from typing import Dict, Iterable, List, Optional

from db import MESSAGES, DocumentStore
from errors import ConflictError, ValidationError
from models import ChatListEntry, ChatMessage, ChatThread, Ride, RideRequest, UserProfile

logger = logging.getLogger(__name__)

# concurrent appends to one thread retry the compare-and-swap this many times
APPEND_ATTEMPTS = 3
NO_MESSAGES = "No messages yet"


def ride_thread_id(ride_id: str, rider_id: str) -> str:
    return f"ride-{ride_id}-rider-{rider_id}"


def contact_thread_id(driver_id: str, rider_id: str) -> str:
    return f"initial-contact-driver-{driver_id}-rider-{rider_id}"


def ensure_thread(store: DocumentStore, thread_id: str, participants) -> ChatThread:
    doc = store.get(MESSAGES, thread_id)
    if doc is None:
        thread = ChatThread(id=thread_id, participants=list(participants))
        try:
            doc = store.create(MESSAGES, thread_id, thread.to_document())
        except ConflictError:
            doc = store.require(MESSAGES, thread_id, "Conversation")
    return ChatThread.from_document(doc)


def send_message(store: DocumentStore, sender: UserProfile, thread_id: str, text: str,
                 partner_id: Optional[str] = None) -> ChatThread:
    if not text or not text.strip():
        raise ValidationError("Message cannot be empty.")
    if not thread_id:
        raise ValidationError("Open a conversation first.")
    message = ChatMessage(sender_id=sender.id, sender_name=sender.name, text=text)

    for attempt in range(APPEND_ATTEMPTS):
        doc = store.get(MESSAGES, thread_id)
        if doc is None:
            if not partner_id:
                raise ValidationError("Conversation partner is unknown.")
            thread = ChatThread(id=thread_id, participants=[sender.id, partner_id], messages=[message])
            try:
                doc = store.create(MESSAGES, thread_id, thread.to_document())
            except ConflictError:
                logger.debug("Thread %s was opened by the other side (attempt %d)", thread_id, attempt + 1)
                continue
            return ChatThread.from_document(doc)
        messages = [*doc.data.get("messages", []), message.model_dump(mode="json")]
        try:
            doc = store.update(MESSAGES, thread_id, {"messages": messages}, expected_version=doc.version)
        except ConflictError:
            logger.debug("Thread %s changed during append (attempt %d)", thread_id, attempt + 1)
            continue
        return ChatThread.from_document(doc)
    raise ConflictError("Failed to send message. Please try again.")


def threads_for(threads: Iterable[ChatThread], user_id: str) -> Dict[str, ChatThread]:
    return {t.id: t for t in threads if user_id in t.participants}


def _entry(thread_id: str, name: str, ride_info: str, partner_id: str,
           threads: Dict[str, ChatThread]) -> ChatListEntry:
    thread = threads.get(thread_id)
    last = thread.messages[-1].text if thread and thread.messages else NO_MESSAGES
    return ChatListEntry(thread_id=thread_id, name=name or partner_id, ride_info=ride_info,
                         last_message=last, partner_id=partner_id)


def chat_list(profile: UserProfile, rides: Iterable[Ride], requests: Iterable[RideRequest],
              threads: Dict[str, ChatThread]) -> List[ChatListEntry]:
    """Derive the user's conversations from the ride and request catalogs."""
    rides_by_id = {r.id: r for r in rides}
    requests = list(requests)
    entries = []

    if profile.role == "driver":
        for ride in rides_by_id.values():
            if ride.driver_id != profile.id:
                continue
            for req in requests:
                if req.ride_id == ride.id and req.status == "accepted":
                    entries.append(_entry(ride_thread_id(ride.id, req.rider_id), req.rider_name,
                                          f"Ride: {ride.origin} to {ride.destination}", req.rider_id, threads))

    if profile.role == "rider":
        for req in requests:
            ride = rides_by_id.get(req.ride_id)
            if req.rider_id == profile.id and req.status == "accepted" and ride:
                entries.append(_entry(ride_thread_id(ride.id, req.rider_id), ride.driver_name,
                                      f"Ride: {ride.origin} to {ride.destination}", ride.driver_id, threads))

    for req in requests:
        if req.status == "searching" and req.contact_initiated_by == profile.id:
            entries.append(_entry(contact_thread_id(profile.id, req.rider_id), req.rider_name,
                                  f"Request: {req.origin} to {req.destination}", req.rider_id, threads))
    return entries
