"""
Room naming for the broadcast hub.

Rooms are keyed ``<kind>:<id>`` with kind one of location, kitchen-station
or table, e.g. ``location:7`` or ``kitchen-station:grill``.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Union


class RoomKind(str, Enum):
    LOCATION = "location"
    KITCHEN_STATION = "kitchen-station"
    TABLE = "table"


class InvalidRoom(ValueError):
    """Room key does not follow the ``<kind>:<id>`` convention."""


_ID_RE = re.compile(r"^[A-Za-z0-9_.\-]{1,64}$")


@dataclass(frozen=True)
class Room:
    kind: RoomKind
    id: str

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.id}"

    @classmethod
    def parse(cls, key: Union[str, "Room"]) -> "Room":
        if isinstance(key, Room):
            return key
        if not isinstance(key, str) or ":" not in key:
            raise InvalidRoom(f"Invalid room {key!r}, expected <kind>:<id>")

        kind, _, room_id = key.partition(":")
        try:
            room_kind = RoomKind(kind)
        except ValueError:
            valid = [k.value for k in RoomKind]
            raise InvalidRoom(f"Unknown room kind {kind!r}, expected one of {valid}")
        if not _ID_RE.match(room_id):
            raise InvalidRoom(f"Invalid room id {room_id!r}")
        return cls(room_kind, room_id)

    @classmethod
    def location(cls, location_id) -> "Room":
        return cls(RoomKind.LOCATION, str(location_id))

    @classmethod
    def kitchen_station(cls, station_id) -> "Room":
        return cls(RoomKind.KITCHEN_STATION, str(station_id))

    @classmethod
    def table(cls, table_id) -> "Room":
        return cls(RoomKind.TABLE, str(table_id))
