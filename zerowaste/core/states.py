from zerowaste.core.errors import InvalidTransitionError
from zerowaste.models.schemas import DonationStatus as S, Role

TERMINAL_STATES = {S.DELIVERED, S.CANCELLED, S.EXPIRED}
OPEN_STATES = {S.CREATED, S.ACCEPTED, S.ASSIGNED, S.IN_TRANSIT}

# (from, event) -> target status and the roles the HTTP surface lets through
TRANSITIONS = {
    (S.CREATED,    "accept"):       {"to": S.ACCEPTED,   "roles": [Role.NGO, Role.ADMIN]},
    (S.ACCEPTED,   "assign"):       {"to": S.ASSIGNED,   "roles": [Role.NGO, Role.VOLUNTEER, Role.ADMIN]},
    (S.ASSIGNED,   "start_pickup"): {"to": S.IN_TRANSIT, "roles": [Role.VOLUNTEER, Role.ADMIN]},

    (S.ACCEPTED,   "complete"):     {"to": S.DELIVERED,  "roles": [Role.DONOR, Role.VOLUNTEER, Role.ADMIN]},
    (S.ASSIGNED,   "complete"):     {"to": S.DELIVERED,  "roles": [Role.DONOR, Role.VOLUNTEER, Role.ADMIN]},
    (S.IN_TRANSIT, "complete"):     {"to": S.DELIVERED,  "roles": [Role.DONOR, Role.VOLUNTEER, Role.ADMIN]},
}

for _src in OPEN_STATES:
    TRANSITIONS[(_src, "cancel")] = {"to": S.CANCELLED, "roles": [Role.DONOR, Role.ADMIN]}
    TRANSITIONS[(_src, "sweep")] = {"to": S.EXPIRED, "roles": [Role.ADMIN]}

EVENTS = sorted({event for _, event in TRANSITIONS})


def can_transition(src: S, event: str) -> bool:
    return (S(src), event) in TRANSITIONS


def sources_for(event: str) -> set:
    """Statuses from which ``event`` is legal."""
    return {src for src, ev in TRANSITIONS if ev == event}


def next_status(src: S, event: str) -> S:
    rule = TRANSITIONS.get((S(src), event))
    if not rule:
        raise InvalidTransitionError(f"Cannot {event} a donation in status {S(src).value}")
    return rule["to"]


def event_roles(event: str) -> list:
    roles = set()
    for (_, ev), rule in TRANSITIONS.items():
        if ev == event:
            roles.update(rule["roles"])
    return sorted(roles, key=lambda r: r.value)
