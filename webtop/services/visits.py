from __future__ import annotations

import datetime
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Set, Tuple

from webtop.services.config import DEFAULT_IDLE_SECONDS
from webtop.services.hits import Hit, is_path_resource


logger = logging.getLogger(__name__)


VisitID = int


@dataclass
class Visit:
    id: VisitID
    host: str
    first_hit_time: datetime.datetime
    last_hit_time: datetime.datetime
    last_path: str
    referer: str
    agent: str
    hit_count: int = 0
    hit_4xx_count: int = 0
    hit_5xx_count: int = 0
    bytes: int = 0
    hits: List[Hit] = field(default_factory=list)

    @classmethod
    def from_first_hit(cls, visit_id: VisitID, hit: Hit) -> "Visit":
        # Counters start at zero; the store feeds the first hit right after.
        return cls(
            id=visit_id,
            host=hit.host,
            first_hit_time=hit.time,
            last_hit_time=hit.time,
            last_path=hit.path,
            referer=hit.referer,
            agent=hit.agent,
        )

    def feed_hit(self, hit: Hit) -> None:
        self.hit_count += 1
        if hit.is_4xx:
            self.hit_4xx_count += 1
        elif hit.is_5xx:
            self.hit_5xx_count += 1
        self.bytes += hit.bytes
        self.last_hit_time = hit.time
        # Show the latest page; a resource only replaces another resource.
        if not (hit.is_resource and not is_path_resource(self.last_path)):
            self.last_path = hit.path
        self.hits.append(hit)

    def has_problems(self) -> bool:
        return self.hit_4xx_count > 0 or self.hit_5xx_count > 0

    def fmt_time_range(self) -> str:
        start = self.first_hit_time.strftime("%Y-%m-%d %H:%M:%S")
        end = self.last_hit_time.strftime("%H:%M:%S")
        return f"{start} - {end}"

    def fmt_bytes(self) -> str:
        if self.bytes < 1024:
            return f"{self.bytes} B"
        value = float(self.bytes)
        unit = "B"
        for unit in ("KB", "MB", "GB"):
            value /= 1024.0
            if value < 1024.0:
                break
        return f"{value:.1f} {unit}"


def _sort_key(visit: Visit) -> Tuple[int, datetime.datetime]:
    return visit.hit_count, visit.last_hit_time


def _sorted_chunks(index: Dict[str, Set[VisitID]]) -> List[Tuple[str, int]]:
    chunks = [(key, len(ids)) for key, ids in index.items()]
    chunks.sort(key=lambda c: c[0])
    chunks.sort(key=lambda c: c[1], reverse=True)
    return chunks


def _discard(index: Dict[str, Set[VisitID]], key: str, visit_id: VisitID) -> None:
    ids = index.get(key)
    if ids is None:
        return
    ids.discard(visit_id)
    if not ids:
        del index[key]


class VisitStore:
    """In-memory visits grouped by host, indexed by path and referer.

    All mutation goes through feed_hit() and purge_visits(); the maps are
    read-only for everyone else. Invariants:

    - host_visit_map only points at visits that are in `visits`.
    - path_visit_map[p] holds exactly the live visits with a hit on p.
    - referer_visit_map[r] holds exactly the live visits whose first hit
      came from r.
    - No map keeps an empty set.
    - Visit IDs come from an ever-increasing counter and are never reused.

    Idle time is measured against the newest hit timestamp seen in the
    stream, so replaying an old log evicts the same way it did live.
    """

    def __init__(self, idle_seconds: int = DEFAULT_IDLE_SECONDS):
        self.idle_seconds = idle_seconds

        self.visits: Dict[VisitID, Visit] = {}
        self.host_visit_map: Dict[str, VisitID] = {}
        self.path_visit_map: Dict[str, Set[VisitID]] = {}
        self.referer_visit_map: Dict[str, Set[VisitID]] = {}
        self.visit_counter: VisitID = 0
        self.last_seen_time: Optional[datetime.datetime] = None

    def feed_hit(self, hit: Hit) -> Visit:
        visit_id = self.host_visit_map.get(hit.host)
        if visit_id is None:
            self.visit_counter += 1
            visit_id = self.visit_counter
            self.visits[visit_id] = Visit.from_first_hit(visit_id, hit)
            self.host_visit_map[hit.host] = visit_id

        visit = self.visits[visit_id]
        visit.feed_hit(hit)

        if self.last_seen_time is None or hit.time > self.last_seen_time:
            self.last_seen_time = hit.time

        self.path_visit_map.setdefault(hit.path, set()).add(visit_id)
        if visit.hit_count == 1:
            self.referer_visit_map.setdefault(visit.referer, set()).add(visit_id)
        return visit

    def purge_visits(self, idle_seconds: Optional[int] = None) -> int:
        """Drop visits idle for longer than the window; return how many went."""
        if self.last_seen_time is None:
            return 0
        window = datetime.timedelta(seconds=self.idle_seconds if idle_seconds is None else idle_seconds)

        expired = [v for v in self.visits.values() if self.last_seen_time - v.last_hit_time > window]
        if not expired:
            return 0

        expired_ids = set()
        for visit in expired:
            del self.visits[visit.id]
            if self.host_visit_map.get(visit.host) == visit.id:
                del self.host_visit_map[visit.host]
            _discard(self.referer_visit_map, visit.referer, visit.id)
            expired_ids.add(visit.id)

        # O(distinct paths); fine for a single site's log.
        for path in list(self.path_visit_map):
            ids = self.path_visit_map[path]
            ids.difference_update(expired_ids)
            if not ids:
                del self.path_visit_map[path]

        logger.debug("Purged %d idle visits, %d left", len(expired), len(self.visits))
        return len(expired)

    def visit_count(self) -> int:
        return len(self.visits)

    def get_visit_by_id(self, visit_id: VisitID) -> Optional[Visit]:
        return self.visits.get(visit_id)

    def _sorted(self, visits: List[Visit]) -> List[Visit]:
        return sorted(visits, key=_sort_key, reverse=True)

    def iter_sorted_visits(self) -> Iterator[Visit]:
        """Live visits, most hits first, then most recent first."""
        return iter(self._sorted(list(self.visits.values())))

    def iter_sorted_path_chunks(self) -> Iterator[Tuple[str, int]]:
        """(path, number of live visits that hit it), biggest first."""
        return iter(_sorted_chunks(self.path_visit_map))

    def iter_sorted_referer_chunks(self) -> Iterator[Tuple[str, int]]:
        """(referer, number of live visits that arrived from it), biggest first."""
        return iter(_sorted_chunks(self.referer_visit_map))

    def visits_for_path(self, path: str) -> List[Visit]:
        ids = self.path_visit_map.get(path, ())
        return self._sorted([self.visits[i] for i in ids])

    def visits_for_referer(self, referer: str) -> List[Visit]:
        ids = self.referer_visit_map.get(referer, ())
        return self._sorted([self.visits[i] for i in ids])
