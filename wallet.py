"""Wallet balances and ride settlement.

Balances are written with compare-and-swap on the wallet document. Ride
payments go through a settlement record keyed by (ride, rider). Each leg is
claimed on the record with compare-and-swap before its wallet write and
marked done after it, so overlapping settlements move the money once.
Re-running a settlement resumes the legs still to do and is a no-op after
it has been posted. A leg left claimed by a crashed process is reported as
a conflict and needs to be checked by hand.
"""
import logging
from decimal import Decimal, InvalidOperation

from db import SETTLEMENTS, WALLETS, DocumentStore
from errors import ConflictError, InsufficientFundsError, ValidationError
from models import Settlement, WalletBalance, build

logger = logging.getLogger(__name__)


def parse_amount(raw) -> Decimal:
    try:
        amount = Decimal(str(raw).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError("Please enter a valid amount.")
    if not amount.is_finite() or amount <= 0:
        raise ValidationError("Please enter a valid amount.")
    return amount


def _wallet_doc(store: DocumentStore, owner_id: str):
    doc = store.get(WALLETS, owner_id)
    if doc is None:
        try:
            doc = store.create(WALLETS, owner_id, WalletBalance(id=owner_id).to_document())
        except ConflictError:
            doc = store.require(WALLETS, owner_id, "Wallet")
    return doc


def get_wallet(store: DocumentStore, owner_id: str) -> WalletBalance:
    """Return the owner's wallet, creating it at zero on first access."""
    return WalletBalance.from_document(_wallet_doc(store, owner_id))


def _apply(store: DocumentStore, owner_id: str, delta: Decimal, allow_negative: bool = True) -> WalletBalance:
    doc = _wallet_doc(store, owner_id)
    wallet = WalletBalance.from_document(doc)
    new_balance = wallet.balance + delta
    if new_balance < 0 and not allow_negative:
        raise InsufficientFundsError("Insufficient balance.")
    doc = store.update(WALLETS, owner_id, {"balance": str(new_balance)}, expected_version=doc.version)
    return WalletBalance.from_document(doc)


def deposit(store: DocumentStore, owner_id: str, amount) -> WalletBalance:
    amount = parse_amount(amount)
    wallet = _apply(store, owner_id, amount)
    logger.info("Deposited %s to %s", amount, owner_id)
    return wallet


def withdraw(store: DocumentStore, owner_id: str, amount) -> WalletBalance:
    amount = parse_amount(amount)
    wallet = _apply(store, owner_id, -amount, allow_negative=False)
    logger.info("Withdrew %s from %s", amount, owner_id)
    return wallet


def settlement_id(ride_id: str, rider_id: str) -> str:
    return f"settlement-{ride_id}-{rider_id}"


def settle_ride(store: DocumentStore, ride_id: str, rider_id: str, driver_id: str, amount) -> Settlement:
    """Move `amount` from the rider's wallet to the driver's, at most once."""
    entry_id = settlement_id(ride_id, rider_id)
    doc = store.get(SETTLEMENTS, entry_id)
    if doc is None:
        entry = build(Settlement, {
            "id": entry_id,
            "ride_id": ride_id,
            "rider_id": rider_id,
            "driver_id": driver_id,
            "amount": amount,
        })
        try:
            doc = store.create(SETTLEMENTS, entry_id, entry.to_document())
        except ConflictError:
            doc = store.require(SETTLEMENTS, entry_id, "Settlement")
    entry = Settlement.from_document(doc)
    if entry.status == "posted":
        return entry
    if entry.driver_id != driver_id or entry.amount != Decimal(str(amount)):
        raise ConflictError("This ride has already been settled with different terms.")

    # rider balances are signed; a ride can leave them below zero
    for leg, owner_id, delta in (("driver_leg", driver_id, entry.amount),
                                 ("rider_leg", rider_id, -entry.amount)):
        progress = doc.data.get(leg, "todo")
        if progress == "done":
            continue
        if progress == "claimed":
            raise ConflictError("This ride is already being settled. Please try again shortly.")
        # the claim fails for every caller but one, before any money moves
        doc = store.update(SETTLEMENTS, entry_id, {leg: "claimed"}, expected_version=doc.version)
        _apply(store, owner_id, delta)
        doc = store.update(SETTLEMENTS, entry_id, {leg: "done"}, expected_version=doc.version)
    doc = store.update(SETTLEMENTS, entry_id, {"status": "posted"}, expected_version=doc.version)
    logger.info("Settled ride %s: %s from %s to %s", ride_id, entry.amount, rider_id, driver_id)
    return Settlement.from_document(doc)
