from decimal import Decimal

import pytest

import marketplace
from db import MemoryStore
from models import RegistrationForm, RideDraft, Vehicle


@pytest.fixture
def store():
    return MemoryStore(app_id="test-app")


def _register_driver(store, user_id, name):
    form = RegistrationForm(
        name=name, email=f"{user_id}@example.com", phone="555-0100", role="driver",
        vehicle=Vehicle(type="Sedan", color="Blue", plate="ABC 123"), license_uploaded=True,
    )
    return marketplace.register(store, user_id, form)


def _register_rider(store, user_id, name):
    form = RegistrationForm(
        name=name, email=f"{user_id}@example.com", phone="555-0199", role="rider", id_uploaded=True,
    )
    return marketplace.register(store, user_id, form)


@pytest.fixture
def driver(store):
    return _register_driver(store, "driver-1", "Dana")


@pytest.fixture
def other_driver(store):
    return _register_driver(store, "driver-2", "Dev")


@pytest.fixture
def rider(store):
    return _register_rider(store, "rider-1", "Riley")


@pytest.fixture
def other_rider(store):
    return _register_rider(store, "rider-2", "Robin")


@pytest.fixture
def make_ride(store, driver):
    def _make(seats=2, price="15", origin="Toronto Downtown", destination="Mississauga", stops=()):
        draft = RideDraft(
            origin=origin, destination=destination, start_time="2026-10-20T08:30",
            available_seats=seats, price_per_seat=Decimal(price), stops=list(stops),
        )
        return marketplace.post_ride(store, driver, draft)
    return _make
