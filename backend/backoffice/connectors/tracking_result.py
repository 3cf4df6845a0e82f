"""
Result type shared by the carrier tracking connectors
"""
from dataclasses import dataclass, field
from typing import List, Optional

from backoffice.domain.shipment import TrackingEvent


@dataclass
class TrackingResult:
    success: bool
    events: List[TrackingEvent] = field(default_factory=list)
    error: Optional[str] = None
