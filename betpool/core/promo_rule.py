"""Typed loss-rebate promo rule.

A promo's ``rule_json`` column holds the camelCase wire format shared with
the UI and the promo-parsing assistant::

    {
      "windowStart": "2025-01-05T00:00:00Z",
      "windowEnd": "2025-01-12T00:00:00Z",
      "minHandleUnits": 500,
      "percentBack": 50,
      "capUnits": 200,
      "oddsMin": -200,            # or null
      "oddsMax": null,
      "disqualifyBothSides": true,
      "sport": "nfl",             # or null
      "betType": null,
      "eventKeyPattern": null     # legacy keyword filter: str | [str] | null
    }

:func:`parse_rule` turns that blob into a frozen :class:`LossRebateRule`
exactly once, choosing which bet filter applies:

* :class:`SportBetTypeFilter` when ``sport`` or ``betType`` is set,
* :class:`KeywordFilter` when only the legacy ``eventKeyPattern`` is set,
* :class:`NoFilter` otherwise.

Evaluation code then dispatches on the filter object and never inspects
which wire keys happened to be present.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional, Tuple, Union

from betpool.errors import InvalidPromoRule


def to_naive_utc(value: datetime) -> datetime:
    """Normalise ``value`` to a naive UTC datetime (the DB storage convention)."""
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def parse_datetime(value: Union[str, datetime], key: str = "datetime") -> datetime:
    if isinstance(value, datetime):
        return to_naive_utc(value)
    if not isinstance(value, str) or not value:
        raise InvalidPromoRule(f"{key} must be an ISO-8601 datetime string")
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return to_naive_utc(datetime.fromisoformat(text))
    except ValueError as exc:
        raise InvalidPromoRule(f"{key}={value!r} is not an ISO-8601 datetime") from exc


# ---------------------------------------------------------------------------
# Bet filters
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class NoFilter:
    """Every bet counts toward the promo."""

    def matches(self, bet: Any) -> bool:
        return True

    def describe(self) -> Optional[str]:
        return None


@dataclass(frozen=True)
class SportBetTypeFilter:
    """Structured filter on the bet's own ``sport`` / ``bet_type`` fields.

    Comparison is case-insensitive; a bet missing a field the filter
    requires never matches.
    """

    sport: Optional[str] = None
    bet_type: Optional[str] = None

    def matches(self, bet: Any) -> bool:
        if self.sport:
            if not bet.sport or bet.sport.lower() != self.sport.lower():
                return False
        if self.bet_type:
            if not bet.bet_type or bet.bet_type.lower() != self.bet_type.lower():
                return False
        return True

    def describe(self) -> Optional[str]:
        return " ".join(p for p in (self.sport, self.bet_type) if p) or None


@dataclass(frozen=True)
class KeywordFilter:
    """Legacy free-text filter.

    Every keyword must appear (case-insensitively) somewhere in
    ``"<event_key> <description>"``.
    """

    keywords: Tuple[str, ...]

    def matches(self, bet: Any) -> bool:
        combined = f"{bet.event_key or ''} {bet.description or ''}".lower()
        return all(kw.lower() in combined for kw in self.keywords)

    def describe(self) -> Optional[str]:
        return " + ".join(f'"{kw}"' for kw in self.keywords)


PromoFilter = Union[NoFilter, SportBetTypeFilter, KeywordFilter]


def _filter_from_wire(data: Mapping[str, Any]) -> PromoFilter:
    sport = _optional_str(data, "sport")
    bet_type = _optional_str(data, "betType")
    if sport or bet_type:
        return SportBetTypeFilter(sport=sport, bet_type=bet_type)

    pattern = data.get("eventKeyPattern")
    if pattern is None or pattern == "" or pattern == []:
        return NoFilter()
    if isinstance(pattern, str):
        return KeywordFilter(keywords=(pattern,))
    if isinstance(pattern, (list, tuple)) and all(isinstance(p, str) for p in pattern):
        return KeywordFilter(keywords=tuple(pattern))
    raise InvalidPromoRule("eventKeyPattern must be a string, a list of strings or null")


# ---------------------------------------------------------------------------
# Rule
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class LossRebateRule:
    """Parsed loss-rebate rule.

    Attributes:
        window_start / window_end: Inclusive placement window (naive UTC).
        min_handle_units: Eligible cash handle needed to qualify.
        percent_back: Percentage (1-100) of eligible losing stake rebated.
        cap_units: Maximum award per member.
        odds_min / odds_max: Inclusive American-odds bounds, ``None`` = open.
        disqualify_both_sides: Reject members with two eligible bets on the
            same event key.
        bet_filter: Which bets count at all.
    """

    window_start: datetime
    window_end: datetime
    min_handle_units: int
    percent_back: int
    cap_units: int
    odds_min: Optional[int] = None
    odds_max: Optional[int] = None
    disqualify_both_sides: bool = False
    bet_filter: PromoFilter = field(default_factory=NoFilter)

    def to_wire(self) -> Dict[str, Any]:
        """Serialise back to the camelCase ``rule_json`` format."""
        sport = bet_type = pattern = None
        if isinstance(self.bet_filter, SportBetTypeFilter):
            sport, bet_type = self.bet_filter.sport, self.bet_filter.bet_type
        elif isinstance(self.bet_filter, KeywordFilter):
            kws = self.bet_filter.keywords
            pattern = kws[0] if len(kws) == 1 else list(kws)

        return {
            "windowStart": self.window_start.isoformat() + "Z",
            "windowEnd": self.window_end.isoformat() + "Z",
            "minHandleUnits": self.min_handle_units,
            "percentBack": self.percent_back,
            "capUnits": self.cap_units,
            "oddsMin": self.odds_min,
            "oddsMax": self.odds_max,
            "disqualifyBothSides": self.disqualify_both_sides,
            "sport": sport,
            "betType": bet_type,
            "eventKeyPattern": pattern,
        }

    def summary(self) -> str:
        """One-line human-readable description, e.g. for the promo list."""
        parts = [f"{self.percent_back}% back on losses"]
        described = self.bet_filter.describe()
        if described:
            parts.append(f"{described} bets only")
        if self.min_handle_units > 0:
            parts.append(f"min {self.min_handle_units} units bet")
        if self.cap_units < 9999:
            parts.append(f"cap {self.cap_units} units")
        if self.odds_min is not None:
            parts.append(f"min odds {self.odds_min}")
        if self.odds_max is not None:
            parts.append(f"max odds {self.odds_max}")
        if self.disqualify_both_sides:
            parts.append("no both-sides")
        return " · ".join(parts)


def _int_field(data: Mapping[str, Any], key: str, *, required: bool = True) -> Optional[int]:
    value = data.get(key)
    if value is None:
        if required:
            raise InvalidPromoRule(f"{key} is required")
        return None
    if isinstance(value, bool):
        raise InvalidPromoRule(f"{key} must be an integer")
    if isinstance(value, float):
        if not value.is_integer():
            raise InvalidPromoRule(f"{key} must be a whole number, got {value!r}")
        return int(value)
    if not isinstance(value, int):
        raise InvalidPromoRule(f"{key} must be an integer")
    return value


def _optional_str(data: Mapping[str, Any], key: str) -> Optional[str]:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise InvalidPromoRule(f"{key} must be a string or null")
    return value.strip() or None


def parse_rule(data: Mapping[str, Any]) -> LossRebateRule:
    """Validate a ``rule_json`` mapping and build the typed rule.

    Raises:
        InvalidPromoRule: On missing keys, wrong types or out-of-range values.
    """
    if not isinstance(data, Mapping):
        raise InvalidPromoRule("rule_json must be an object")

    window_start = parse_datetime(data.get("windowStart"), "windowStart")
    window_end = parse_datetime(data.get("windowEnd"), "windowEnd")
    if window_end < window_start:
        raise InvalidPromoRule("windowEnd must not precede windowStart")

    min_handle = _int_field(data, "minHandleUnits")
    percent_back = _int_field(data, "percentBack")
    cap = _int_field(data, "capUnits")
    odds_min = _int_field(data, "oddsMin", required=False)
    odds_max = _int_field(data, "oddsMax", required=False)

    if min_handle < 0:
        raise InvalidPromoRule(f"minHandleUnits must be >= 0, got {min_handle}")
    if not 1 <= percent_back <= 100:
        raise InvalidPromoRule(f"percentBack must be in [1, 100], got {percent_back}")
    if cap < 0:
        raise InvalidPromoRule(f"capUnits must be >= 0, got {cap}")
    if odds_min is not None and odds_max is not None and odds_min > odds_max:
        raise InvalidPromoRule(f"oddsMin {odds_min} is greater than oddsMax {odds_max}")

    dq = data.get("disqualifyBothSides", False)
    if not isinstance(dq, bool):
        raise InvalidPromoRule("disqualifyBothSides must be a boolean")

    return LossRebateRule(
        window_start=window_start,
        window_end=window_end,
        min_handle_units=min_handle,
        percent_back=percent_back,
        cap_units=cap,
        odds_min=odds_min,
        odds_max=odds_max,
        disqualify_both_sides=dq,
        bet_filter=_filter_from_wire(data),
    )
