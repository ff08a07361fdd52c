"""AI chat concierge."""

from .events import StreamEvent
from .prompt import SearchContext
from .service import ConciergeService, get_concierge_service

__all__ = ["ConciergeService", "SearchContext", "StreamEvent", "get_concierge_service"]
