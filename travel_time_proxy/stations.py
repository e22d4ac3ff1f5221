# Red Line stations used for station validation and walking-time origins.

from dataclasses import dataclass
from typing import Any, Dict


@dataclass(frozen=True)
class Station:
    station_id: str
    name: str
    latitude: float
    longitude: float

    def as_location(self) -> Dict[str, Any]:
        return {
            "location": {
                "latLng": {"latitude": self.latitude, "longitude": self.longitude},
            }
        }


_STATIONS = [
    Station("place-knncl", "Kendall/MIT", 42.3624, -71.0852),
    Station("place-chmnl", "Charles/MGH", 42.3612, -71.0703),
    Station("place-pktrm", "Park Street", 42.3563, -71.0625),
    Station("place-dwnxg", "Downtown Crossing", 42.3555, -71.0605),
    Station("place-sstat", "South Station", 42.3519, -71.0552),
    Station("place-harsq", "Harvard", 42.3734, -71.1190),
    Station("place-portr", "Porter", 42.3884, -71.1191),
    Station("place-davis", "Davis", 42.3967, -71.1218),
    Station("place-cntsq", "Central Square", 42.3654, -71.1037),
    Station("place-asmnl", "Alewife", 42.3951, -71.1421),
    Station("place-jfk", "JFK/UMass", 42.3206, -71.0523),
    Station("place-andrw", "Andrew", 42.3298, -71.0571),
    Station("place-brdwy", "Broadway", 42.3426, -71.0569),
]

RED_LINE_STATIONS: Dict[str, Station] = {s.station_id: s for s in _STATIONS}


def station_name(station_id: str) -> str:
    station = RED_LINE_STATIONS.get(station_id)
    return station.name if station else "Unknown"
