"""
Pydantic models ("schemas") for API responses.

We keep these separate from the store so the API layer does not expose
internal snapshot types.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class HealthOut(BaseModel):
    """
    Exporter status used by /health.

    - status: "ok" if the last poll reached Xray, "degraded" otherwise
    - state: poll loop state (running, backoff, stopped)
    - consecutive_failures: failed polls since the last success
    - last_success: wall-clock time of the last successful poll, if any
    - online_entries: (user, ip) pairs currently exported
    - traffic_mode: "pull" or "background"
    """

    status: str
    state: str
    up: bool
    consecutive_failures: int
    last_success: Optional[datetime] = None
    online_entries: int
    traffic_mode: str
