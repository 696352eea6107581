from decimal import Decimal

import pytest

from matching import build_route, route_overlap, search_open_requests, search_rides
from models import Ride, RideRequest, SearchCriteria


def ride(origin, destination, seats=2, stops=(), ride_id="r1"):
    return Ride(
        id=ride_id, driver_id="d1", origin=origin, destination=destination,
        route=build_route(origin, stops, destination), start_time="2026-10-20T08:30",
        available_seats=seats, price_per_seat=Decimal("15"),
    )


def test_build_route_drops_blank_stops():
    assert build_route("A", ["", "  B ", "   "], "C") == ["A", "B", "C"]


def test_overlap_is_case_insensitive():
    assert route_overlap(["Downtown"], ["downtown plaza"])


@pytest.mark.parametrize("a, b", [
    (["Downtown"], ["downtown plaza"]),
    (["Toronto", "Oakville"], ["Hamilton", "oak"]),
    (["Toronto"], ["Ottawa"]),
    ([], ["Ottawa"]),
])
def test_overlap_is_symmetric(a, b):
    assert route_overlap(a, b) == route_overlap(b, a)


def test_overlap_needs_a_shared_point():
    assert not route_overlap(["Toronto", "Oakville"], ["Ottawa", "Kingston"])
    assert not route_overlap([], ["Toronto"])


def test_search_returns_downtown_ride():
    rides = [ride("Toronto Downtown", "Mississauga")]
    found = search_rides(rides, SearchCriteria(origin="Downtown", destination="Mississauga"))
    assert [r.id for r in found] == ["r1"]


def test_search_without_route_points_uses_substrings_and_seats():
    rides = [
        ride("Toronto Downtown", "Mississauga", ride_id="match"),
        ride("Toronto Downtown", "Mississauga", seats=0, ride_id="full"),
        ride("Toronto Downtown", "Brampton", ride_id="elsewhere"),
        ride("Scarborough", "Mississauga", ride_id="other-start"),
    ]
    found = search_rides(rides, SearchCriteria(origin="downtown", destination="MISSISSAUGA"))
    assert [r.id for r in found] == ["match"]


def test_empty_criteria_matches_every_ride_with_seats():
    rides = [ride("A", "B", ride_id="a"), ride("C", "D", seats=0, ride_id="c")]
    assert [r.id for r in search_rides(rides, SearchCriteria())] == ["a"]


def test_search_with_route_points_checks_overlap():
    rides = [
        ride("Toronto", "Hamilton", stops=["Oakville"], ride_id="via-oakville"),
        ride("Toronto", "Hamilton", stops=["Milton"], ride_id="via-milton"),
    ]
    criteria = SearchCriteria(stops=["oakville"])
    # criteria route is just ["oakville"]; only the Oakville ride shares a point
    assert [r.id for r in search_rides(rides, criteria)] == ["via-oakville"]


def test_blank_route_points_do_not_trigger_overlap():
    rides = [ride("Toronto", "Hamilton")]
    assert search_rides(rides, SearchCriteria(stops=["", "  "])) == rides


def test_search_open_requests_only_returns_searching():
    open_req = RideRequest(id="o1", rider_id="r1", origin="Toronto", destination="Ottawa",
                           route=["Toronto", "Ottawa"], status="searching")
    bound = RideRequest(id="b1", ride_id="ride", rider_id="r1", origin="Toronto",
                        destination="Ottawa", status="pending")
    found = search_open_requests([open_req, bound], SearchCriteria(origin="toronto"))
    assert [r.id for r in found] == ["o1"]
