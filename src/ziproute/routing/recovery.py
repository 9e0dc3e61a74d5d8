"""Recovery guidance for failed lookups.

Pure functions: given the code a caller typed and why it failed, produce
alternative postal codes plus next steps. Every advice has at least one
suggestion, one recovery action and one tip.
"""
from __future__ import annotations

from dataclasses import dataclass, field

from ziproute.errors import ErrorCode
from ziproute.territory import reference

MAX_TYPO = 3
MAX_NEARBY = 3
MAX_SUGGESTIONS = 5
NEARBY_SPAN = 10
NEARBY_STEP = 2

_LOOKALIKES = str.maketrans({"O": "0", "o": "0", "I": "1", "l": "1", "i": "1", "S": "5", "s": "5", "B": "8"})


@dataclass(frozen=True)
class Suggestion:
    postal_code: str
    city_name: str
    reason: str  # typo | nearby | popular


@dataclass
class RecoveryAdvice:
    suggestions: list[Suggestion] = field(default_factory=list)
    recovery_actions: list[str] = field(default_factory=list)
    helpful_tips: list[str] = field(default_factory=list)

    @property
    def suggestion_labels(self) -> list[str]:
        return format_suggestions(self.suggestions)


_ACTIONS: dict[ErrorCode, list[str]] = {
    ErrorCode.INVALID_FORMAT: [
        "Enter only the first 5 digits of your ZIP code",
        "Remove spaces, dashes or the +4 extension",
    ],
    ErrorCode.INVALID_LENGTH: [
        "Check that your ZIP code has exactly 5 digits",
        "Pick one of the suggested ZIP codes below",
    ],
    ErrorCode.INVALID_CHARACTERS: [
        "Use numbers only, letters are not part of a ZIP code",
        "Check for the letter O typed in place of a zero",
    ],
    ErrorCode.NOT_IN_REGION: [
        "Enter a Texas ZIP code (most start with 75, 76, 77, 78 or 79)",
        "Browse plans by city instead",
    ],
    ErrorCode.NOT_FOUND: [
        "Double-check the ZIP code on a recent utility bill",
        "Try a nearby ZIP code or browse plans by city",
    ],
    ErrorCode.NOT_SERVICEABLE: [
        "Contact your local utility directly for rates",
        "If you are moving, enter the ZIP code of your new address",
    ],
    ErrorCode.NO_CONTENT: [
        "Try a nearby ZIP code in the same city",
        "Check back soon, new plans are added regularly",
    ],
    ErrorCode.INSUFFICIENT_CONTENT: [
        "Compare the plans available now",
        "Try a nearby ZIP code for more options",
    ],
}

_SYSTEM_ACTIONS = [
    "Wait a moment and try again",
    "Browse plans by city while we recover",
]

_TIPS: dict[ErrorCode, list[str]] = {
    ErrorCode.INVALID_FORMAT: ["Texas ZIP codes are 5 digits, for example 75201 for downtown Dallas."],
    ErrorCode.INVALID_LENGTH: ["Texas ZIP codes are 5 digits, for example 77002 for downtown Houston."],
    ErrorCode.INVALID_CHARACTERS: ["ZIP codes contain digits only."],
    ErrorCode.NOT_IN_REGION: ["Retail electricity choice is only offered in parts of Texas."],
    ErrorCode.NOT_FOUND: ["New ZIP codes can take a few weeks to appear in utility records."],
    ErrorCode.NOT_SERVICEABLE: [
        "Areas served by municipal utilities or cooperatives such as Austin Energy or CPS Energy "
        "do not have retail choice."
    ],
    ErrorCode.NO_CONTENT: ["Plan availability can differ between neighbouring ZIP codes."],
    ErrorCode.INSUFFICIENT_CONTENT: ["Plan availability can differ between neighbouring ZIP codes."],
}

_SYSTEM_TIPS = ["Your ZIP code is fine, the problem is on our side."]


def advise(postal_code: str | None, error_code: ErrorCode) -> RecoveryAdvice:
    code = (postal_code or "").strip() if isinstance(postal_code, str) else ""
    suggestions: list[Suggestion] = []
    seen: set[str] = {code}

    def add(items: list[Suggestion]) -> None:
        for s in items:
            if s.postal_code not in seen and len(suggestions) < MAX_SUGGESTIONS:
                seen.add(s.postal_code)
                suggestions.append(s)

    add(typo_corrections(code)[:MAX_TYPO])
    if error_code not in (ErrorCode.NOT_IN_REGION,) and code.isdigit() and len(code) == 5:
        add(nearby_postal_codes(code)[:MAX_NEARBY])
    add(popular_suggestions(code))

    tips = list(_TIPS.get(error_code, _SYSTEM_TIPS))
    region = reference.region_for_prefix(code) if code[:2].isdigit() else None
    if region and error_code in (ErrorCode.NOT_FOUND, ErrorCode.NOT_SERVICEABLE, ErrorCode.NO_CONTENT):
        tips.append(f"ZIP codes starting with {code[:2]} are in the {region} area.")

    return RecoveryAdvice(
        suggestions=suggestions,
        recovery_actions=list(_ACTIONS.get(error_code, _SYSTEM_ACTIONS)),
        helpful_tips=tips,
    )


def _routable(code: str) -> reference.TerritoryMatch | None:
    match = reference.lookup(code)
    if match is None or not match.territory.deregulated:
        return None
    return match


def typo_corrections(code: str) -> list[Suggestion]:
    """Likely intended codes: look-alike letters, a missing or extra digit, swapped neighbours."""
    if not code:
        return []
    cleaned = code.translate(_LOOKALIKES)
    cleaned = "".join(ch for ch in cleaned if ch.isdigit())
    candidates: list[str] = []

    if len(cleaned) == 5:
        if cleaned != code:
            candidates.append(cleaned)
        for i in range(4):
            chars = list(cleaned)
            chars[i], chars[i + 1] = chars[i + 1], chars[i]
            candidates.append("".join(chars))
    elif len(cleaned) == 4:
        candidates.append("7" + cleaned)
        for i in range(5):
            for d in "0123456789":
                candidates.append(cleaned[:i] + d + cleaned[i:])
    elif len(cleaned) == 6:
        for i in range(6):
            candidates.append(cleaned[:i] + cleaned[i + 1:])

    out: list[Suggestion] = []
    for candidate in dict.fromkeys(candidates):
        if candidate == code:
            continue
        match = _routable(candidate)
        if match is not None:
            out.append(Suggestion(candidate, match.city.name, "typo"))
    return out


def nearby_postal_codes(code: str) -> list[Suggestion]:
    base = int(code)
    out = []
    for step in range(NEARBY_STEP, NEARBY_SPAN + 1, NEARBY_STEP):
        for n in (base - step, base + step):
            if 0 <= n <= 99999:
                candidate = f"{n:05d}"
                match = _routable(candidate)
                if match is not None:
                    out.append(Suggestion(candidate, match.city.name, "nearby"))
    return out


def popular_suggestions(code: str, limit: int = 3) -> list[Suggestion]:
    prefix = code[:2]
    ranked = sorted(
        reference.popular_postal_codes().items(),
        key=lambda item: (item[0][:2] != prefix,),
    )
    out = []
    for candidate, city in ranked:
        if _routable(candidate) is not None:
            out.append(Suggestion(candidate, city, "popular"))
        if len(out) >= limit:
            break
    return out


def format_suggestions(suggestions: list[Suggestion]) -> list[str]:
    labels = []
    for s in suggestions:
        if s.reason == "typo":
            labels.append(f"{s.postal_code} - {s.city_name} (Did you mean this?)")
        elif s.reason == "nearby":
            labels.append(f"{s.postal_code} ({s.city_name} - Nearby)")
        else:
            labels.append(f"{s.postal_code} ({s.city_name} - Popular)")
    return labels
