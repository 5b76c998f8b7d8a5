from __future__ import annotations

import datetime
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple, Union

from duty_codes import REST

from .dates import is_weekend, iso_week_number, weekday_index


def cycle_index(days_since_entry: int, phase_offset: int, cycle_length: int = 8) -> int:
    return (days_since_entry + phase_offset) % cycle_length


def cyclic_duty_code(days_since_entry: int, phase_offset: int, pattern: Sequence[str]) -> str:
    """Map a day count on the fixed rotation to its slot in the repeating pattern."""
    if not pattern:
        return REST
    return pattern[cycle_index(days_since_entry, phase_offset, len(pattern))]


# ---------------------------------------------------------------------------
# Irregular group: one strategy per rank bucket.


@dataclass(frozen=True)
class LeadRank:
    """Rank 0: first code on odd weekdays of odd weeks, flipped on even weeks."""

    def assign(self, week: int, odd_day: bool, codes: Tuple[str, str]) -> str:
        first, second = codes
        if week % 2 == 1:
            return first if odd_day else second
        return second if odd_day else first


@dataclass(frozen=True)
class MirrorRank:
    """Rank 1: always the opposite of rank 0 on the same day."""

    def assign(self, week: int, odd_day: bool, codes: Tuple[str, str]) -> str:
        first, second = codes
        lead = LeadRank().assign(week, odd_day, codes)
        return second if lead == first else first


@dataclass(frozen=True)
class ParityRank:
    rank: int

    def assign(self, week: int, odd_day: bool, codes: Tuple[str, str]) -> str:
        first, second = codes
        return first if (self.rank + week) % 2 == 0 else second


RankStrategy = Union[LeadRank, MirrorRank, ParityRank]


def rank_strategy(rank: int) -> RankStrategy:
    if rank == 0:
        return LeadRank()
    if rank == 1:
        return MirrorRank()
    return ParityRank(rank)


def roster_ranking(agent_codes: Iterable[str]) -> List[str]:
    return sorted((code or "").strip().upper() for code in agent_codes if code)


def agent_rank(agent_code: str, roster: Sequence[str]) -> Optional[int]:
    target = (agent_code or "").strip().upper()
    try:
        return list(roster).index(target)
    except ValueError:
        return None


def irregular_duty_code(
    day: datetime.date,
    agent_code: str,
    roster: Sequence[str],
    codes: Tuple[str, str],
    *,
    rest_code: str = REST,
) -> str:
    """Five-of-seven pattern: weekends off, weekdays split between two shifts by rank and week parity.

    ``roster`` must already be ranked (see ``roster_ranking``). Agents missing
    from the roster, including every agent of an empty group, rest.
    """
    if is_weekend(day):
        return rest_code
    rank = agent_rank(agent_code, roster)
    if rank is None:
        return rest_code
    week = iso_week_number(day)
    odd_day = weekday_index(day) % 2 == 1
    return rank_strategy(rank).assign(week, odd_day, codes)
