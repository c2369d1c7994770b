"""
Daily quota data models.
"""

from datetime import datetime

from pydantic import BaseModel, Field


class QuotaRecord(BaseModel):
    """One row per identifier per UTC day."""
    identifier: str
    date: str = Field(..., pattern=r'^\d{4}-\d{2}-\d{2}$', description="UTC date, YYYY-MM-DD")
    scans_count: int = Field(default=0, ge=0)


class RateLimitInfo(BaseModel):
    """Result of a daily quota check."""
    allowed: bool
    scans_used: int = Field(..., ge=0)
    scans_remaining: int = Field(..., ge=0)
    reset_at: datetime

    def to_response(self) -> dict:
        return {
            "scansUsed": self.scans_used,
            "scansRemaining": self.scans_remaining,
            "resetAt": self.reset_at.isoformat(),
        }
