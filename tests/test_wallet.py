from decimal import Decimal

import pytest

import wallet
from db import SETTLEMENTS, WALLETS
from errors import ConflictError, InsufficientFundsError, ValidationError


def test_wallet_is_created_at_zero(store):
    assert store.get(WALLETS, "u1") is None
    assert wallet.get_wallet(store, "u1").balance == 0
    assert store.get(WALLETS, "u1") is not None


def test_deposit_and_withdraw(store):
    wallet.deposit(store, "u1", "20.50")
    after = wallet.withdraw(store, "u1", Decimal("5.25"))
    assert after.balance == Decimal("15.25")


@pytest.mark.parametrize("raw", ["", "abc", "0", "-3", "nan", None])
def test_invalid_amounts_are_rejected(store, raw):
    with pytest.raises(ValidationError):
        wallet.deposit(store, "u1", raw)


def test_overdraw_fails_and_leaves_balance(store):
    wallet.deposit(store, "u1", "10")
    with pytest.raises(InsufficientFundsError):
        wallet.withdraw(store, "u1", "10.01")
    assert wallet.get_wallet(store, "u1").balance == Decimal("10")


def test_insufficient_funds_is_a_conflict():
    assert issubclass(InsufficientFundsError, ConflictError)


def test_settlement_runs_once(store):
    wallet.settle_ride(store, "ride-1", "rider", "driver", Decimal("15"))
    again = wallet.settle_ride(store, "ride-1", "rider", "driver", Decimal("15"))

    assert again.status == "posted"
    assert wallet.get_wallet(store, "driver").balance == Decimal("15")
    assert wallet.get_wallet(store, "rider").balance == Decimal("-15")


def test_interrupted_settlement_resumes(store):
    entry_id = wallet.settlement_id("ride-1", "rider")
    # driver leg already applied before the crash
    store.set(SETTLEMENTS, entry_id, {
        "ride_id": "ride-1", "rider_id": "rider", "driver_id": "driver", "amount": "15",
        "driver_leg": "done", "rider_leg": "todo", "status": "pending",
    })
    wallet.deposit(store, "driver", "15")

    entry = wallet.settle_ride(store, "ride-1", "rider", "driver", Decimal("15"))

    assert entry.rider_leg == "done" and entry.status == "posted"
    assert wallet.get_wallet(store, "driver").balance == Decimal("15")
    assert wallet.get_wallet(store, "rider").balance == Decimal("-15")


def test_overlapping_settlements_move_money_once(store, monkeypatch):
    apply_wallet = wallet._apply
    overlapped = []

    def apply_with_second_settlement(*args, **kwargs):
        if not overlapped:
            overlapped.append(True)
            with pytest.raises(ConflictError):
                wallet.settle_ride(store, "ride-1", "rider", "driver", Decimal("15"))
        return apply_wallet(*args, **kwargs)

    monkeypatch.setattr(wallet, "_apply", apply_with_second_settlement)
    entry = wallet.settle_ride(store, "ride-1", "rider", "driver", Decimal("15"))

    assert overlapped and entry.status == "posted"
    assert wallet.get_wallet(store, "driver").balance == Decimal("15")
    assert wallet.get_wallet(store, "rider").balance == Decimal("-15")


def test_claimed_leg_is_not_applied_again(store):
    entry_id = wallet.settlement_id("ride-1", "rider")
    store.set(SETTLEMENTS, entry_id, {
        "ride_id": "ride-1", "rider_id": "rider", "driver_id": "driver", "amount": "15",
        "driver_leg": "claimed", "status": "pending",
    })
    with pytest.raises(ConflictError):
        wallet.settle_ride(store, "ride-1", "rider", "driver", Decimal("15"))
    assert wallet.get_wallet(store, "driver").balance == 0


def test_settlement_with_different_terms_conflicts(store):
    entry_id = wallet.settlement_id("ride-1", "rider")
    store.set(SETTLEMENTS, entry_id, {
        "ride_id": "ride-1", "rider_id": "rider", "driver_id": "driver", "amount": "15",
        "status": "pending",
    })
    with pytest.raises(ConflictError):
        wallet.settle_ride(store, "ride-1", "rider", "driver", Decimal("99"))
