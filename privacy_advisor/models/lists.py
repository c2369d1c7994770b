"""
Tracker reference list models.
"""

from typing import List, Optional

from pydantic import BaseModel, Field


class TrackerEntry(BaseModel):
    domain: str
    category: str


class DomainList(BaseModel):
    """A normalized list; any of the three sections may be present."""
    domains: List[str] = Field(default_factory=list)
    fingerprinting: Optional[List[str]] = None
    trackers: Optional[List[TrackerEntry]] = None

    def has_entries(self) -> bool:
        """True if any section kept at least one entry."""
        return bool(self.domains or self.fingerprinting or self.trackers)


class Lists(BaseModel):
    """Reference lists consumed by the scan logic."""
    easy_privacy: DomainList
    who_tracks: DomainList

    def tracker_domains(self) -> List[str]:
        """All tracker domains from both lists, de-duplicated, order kept."""
        seen = dict.fromkeys(self.easy_privacy.domains)
        for entry in self.who_tracks.trackers or []:
            seen.setdefault(entry.domain, None)
        return list(seen)
