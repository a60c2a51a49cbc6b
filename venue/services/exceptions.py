"""Engine error taxonomy.

Every error is recoverable by the caller: retry through the queue, refresh the
view, or show the message.
"""


class VenueError(Exception):
    """Base class for all engine errors."""
    pass


class NotFoundError(VenueError):
    """Unknown station, time slot, reservation, queue entry, match or notification."""
    def __init__(self, kind: str, identifier):
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} {identifier} not found")


class ConflictError(VenueError):
    """The station slot is already held by an active reservation."""
    def __init__(self, station_id: str, day, time_slot_id: str):
        self.station_id = station_id
        self.day = day
        self.time_slot_id = time_slot_id
        super().__init__(
            f"Station {station_id} is already reserved on {day} for slot {time_slot_id}"
        )


class InvalidStateError(VenueError):
    """Illegal state transition."""
    pass


class FullError(VenueError):
    """Match is at capacity."""
    def __init__(self, match_id: int, max_players: int):
        self.match_id = match_id
        self.max_players = max_players
        super().__init__(f"Match {match_id} is full ({max_players} players)")


class AlreadyJoinedError(VenueError):
    """User already takes part in the match or waits in the queue bucket."""
    pass
