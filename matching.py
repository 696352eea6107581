from typing import Iterable, List

from models import Ride, RideRequest, SearchCriteria
from utils import clean_points


def build_route(origin: str, stops: Iterable[str], destination: str) -> List[str]:
    """Return [origin, ...non-blank stops, destination]."""
    return [origin, *clean_points(stops), destination]


def route_overlap(route_a, route_b) -> bool:
    """True if any waypoint on one side contains, or is contained in, one on the other.

    Case-insensitive substring containment, not a geographic test: "Downtown"
    overlaps "downtown plaza". An empty side never overlaps.
    """
    if not route_a or not route_b:
        return False
    lower_a = [p.lower() for p in route_a]
    lower_b = [p.lower() for p in route_b]
    return any(a in b or b in a for a in lower_a for b in lower_b)


def _contains(value: str, needle: str) -> bool:
    return not needle or needle.strip().lower() in (value or "").lower()


def _criteria_route(criteria: SearchCriteria) -> List[str]:
    return clean_points([criteria.origin, *criteria.stops, criteria.destination])


def _route_matches(route, criteria: SearchCriteria) -> bool:
    # overlap only applies once the searcher names an intermediate point
    if not clean_points(criteria.stops):
        return True
    return route_overlap(route, _criteria_route(criteria))


def matches_criteria(ride: Ride, criteria: SearchCriteria) -> bool:
    return (
        _contains(ride.origin, criteria.origin)
        and _contains(ride.destination, criteria.destination)
        and ride.available_seats > 0
        and _route_matches(ride.route, criteria)
    )


def search_rides(rides: Iterable[Ride], criteria: SearchCriteria) -> List[Ride]:
    return [r for r in rides if matches_criteria(r, criteria)]


def search_open_requests(requests: Iterable[RideRequest], criteria: SearchCriteria) -> List[RideRequest]:
    """Open rider requests a driver could pick up."""
    return [
        r for r in requests
        if r.status == "searching"
        and _contains(r.origin, criteria.origin)
        and _contains(r.destination, criteria.destination)
        and _route_matches(r.route, criteria)
    ]
