"""Static Texas territory reference.

Maps postal-code ranges to cities, counties and the utility territory that
delivers power there. Everything in this module is pure: no I/O, no clock.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum


class TerritoryKind(str, Enum):
    TDU = "tdu"
    MUNICIPAL = "municipal"
    COOPERATIVE = "cooperative"
    INVESTOR_OWNED = "investor_owned"


@dataclass(frozen=True)
class Territory:
    id: str
    name: str
    legal_name: str
    duns: str
    deregulated: bool
    kind: TerritoryKind = TerritoryKind.TDU


@dataclass(frozen=True)
class City:
    slug: str
    name: str
    county: str
    territory_id: str
    anchor: str
    ranges: tuple[tuple[int, int], ...]

    def contains(self, code: int) -> bool:
        return any(lo <= code <= hi for lo, hi in self.ranges)


@dataclass(frozen=True)
class TerritoryMatch:
    postal_code: str
    city: City
    territory: Territory


# Inclusive numeric ranges of Texas postal codes.
REGION_RANGES: tuple[tuple[int, int], ...] = (
    (73301, 73399),
    (75001, 79999),
    (88510, 88589),
)

# Lowest code the coverage scanner will probe below a city anchor.
SCAN_FLOOR = 70000

TERRITORIES: dict[str, Territory] = {
    t.id: t
    for t in (
        Territory("oncor", "Oncor", "Oncor Electric Delivery", "1039940674000", True),
        Territory("centerpoint", "CenterPoint", "CenterPoint Energy Houston Electric", "957877905", True),
        Territory("aep-central", "AEP Texas Central", "AEP Texas Central Company", "007924772", True),
        Territory("aep-north", "AEP Texas North", "AEP Texas North Company", "007923311", True),
        Territory("tnmp", "TNMP", "Texas-New Mexico Power Company", "007929441", True),
        Territory("lpl", "Lubbock Power & Light", "Lubbock Power & Light", "0071373760", True, TerritoryKind.MUNICIPAL),
        Territory("austin-energy", "Austin Energy", "Austin Energy", "", False, TerritoryKind.MUNICIPAL),
        Territory("cps-energy", "CPS Energy", "CPS Energy", "", False, TerritoryKind.MUNICIPAL),
        Territory("el-paso-electric", "El Paso Electric", "El Paso Electric Company", "", False, TerritoryKind.INVESTOR_OWNED),
        Territory("pedernales", "Pedernales Electric", "Pedernales Electric Cooperative", "", False, TerritoryKind.COOPERATIVE),
    )
}

CITIES: tuple[City, ...] = (
    City("dallas-tx", "Dallas", "Dallas", "oncor", "75201", ((75201, 75260),)),
    City("irving-tx", "Irving", "Dallas", "oncor", "75038", ((75038, 75039), (75060, 75063))),
    City("plano-tx", "Plano", "Collin", "oncor", "75023", ((75023, 75026), (75074, 75075), (75093, 75094))),
    City("tyler-tx", "Tyler", "Smith", "oncor", "75701", ((75701, 75713),)),
    City("arlington-tx", "Arlington", "Tarrant", "oncor", "76001", ((76001, 76019),)),
    City("fort-worth-tx", "Fort Worth", "Tarrant", "oncor", "76101", ((76101, 76140),)),
    City("waco-tx", "Waco", "McLennan", "oncor", "76701", ((76701, 76716),)),
    City("houston-tx", "Houston", "Harris", "centerpoint", "77001", ((77001, 77099),)),
    City("pasadena-tx", "Pasadena", "Harris", "centerpoint", "77501", ((77501, 77508),)),
    City("league-city-tx", "League City", "Galveston", "tnmp", "77573", ((77573, 77574),)),
    City("college-station-tx", "College Station", "Brazos", "oncor", "77840", ((77840, 77845),)),
    City("corpus-christi-tx", "Corpus Christi", "Nueces", "aep-central", "78401", ((78401, 78419),)),
    City("abilene-tx", "Abilene", "Taylor", "aep-north", "79601", ((79601, 79608),)),
    City("lubbock-tx", "Lubbock", "Lubbock", "lpl", "79401", ((79401, 79424),)),
    City("austin-tx", "Austin", "Travis", "austin-energy", "78701", ((73301, 73344), (78701, 78759))),
    City("san-antonio-tx", "San Antonio", "Bexar", "cps-energy", "78201", ((78201, 78266),)),
    City("dripping-springs-tx", "Dripping Springs", "Hays", "pedernales", "78620", ((78620, 78620),)),
    City("el-paso-tx", "El Paso", "El Paso", "el-paso-electric", "79901", ((79901, 79938), (88510, 88589))),
)

_CITIES_BY_SLUG = {c.slug: c for c in CITIES}

PREFIX_REGIONS: dict[str, str] = {
    "75": "Dallas-Fort Worth",
    "76": "Fort Worth-Waco",
    "77": "Houston",
    "78": "Austin-San Antonio",
    "79": "West Texas",
}

POPULAR_POSTAL_CODES: dict[str, str] = {
    "75201": "Dallas",
    "75701": "Tyler",
    "77001": "Houston",
    "77002": "Houston",
    "78701": "Austin",
    "78201": "San Antonio",
    "76101": "Fort Worth",
    "79401": "Lubbock",
}

_SLUG_STRIP = re.compile(r"[^a-z0-9]+")


def in_region(code: str) -> bool:
    if not code.isdigit() or len(code) != 5:
        return False
    n = int(code)
    return any(lo <= n <= hi for lo, hi in REGION_RANGES)


def lookup(code: str) -> TerritoryMatch | None:
    """Resolve a 5-digit code to its city and territory, or None if unmapped."""
    if not in_region(code):
        return None
    n = int(code)
    for city in CITIES:
        if city.contains(n):
            return TerritoryMatch(code, city, TERRITORIES[city.territory_id])
    return None


def city_by_slug(slug: str) -> City | None:
    return _CITIES_BY_SLUG.get(slug)


def territory_by_id(territory_id: str) -> Territory | None:
    return TERRITORIES.get(territory_id)


def territory_by_name(name: str) -> Territory | None:
    needle = name.strip().lower()
    for t in TERRITORIES.values():
        if needle in (t.name.lower(), t.legal_name.lower(), t.id):
            return t
    return None


def city_slug(name: str) -> str:
    """``"Fort Worth"`` -> ``"fort-worth-tx"``."""
    base = _SLUG_STRIP.sub("-", name.strip().lower()).strip("-")
    return base if base.endswith("-tx") else f"{base}-tx"


def redirect_url(slug: str) -> str:
    return f"/electricity-plans/{slug}"


def known_postal_codes(slug: str) -> list[str]:
    city = city_by_slug(slug)
    if city is None:
        return []
    return [f"{n:05d}" for lo, hi in city.ranges for n in range(lo, hi + 1)]


def region_for_prefix(code: str) -> str | None:
    return PREFIX_REGIONS.get(code[:2])


def popular_postal_codes() -> dict[str, str]:
    return dict(POPULAR_POSTAL_CODES)
