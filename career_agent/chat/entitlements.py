"""Daily message quotas per user type."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

from ..errors import APIError, ErrorKind
from ..persistence.protocol import ChatRepository

logger = logging.getLogger(__name__)

QUOTA_WINDOW = timedelta(hours=24)


def window_start_iso(now: Optional[datetime] = None) -> str:
    start = (now or datetime.now(timezone.utc)) - QUOTA_WINDOW
    return start.replace(microsecond=0).isoformat().replace("+00:00", "Z")


class EntitlementChecker:
    """Rejects a new user message once the rolling 24h quota is used up."""

    def __init__(self, repository: ChatRepository, max_messages_per_day: Dict[str, int]) -> None:
        self.repository = repository
        self.max_messages_per_day = dict(max_messages_per_day)

    def limit_for(self, user_type: str) -> int:
        if user_type in self.max_messages_per_day:
            return int(self.max_messages_per_day[user_type])
        # Unknown user types get the strictest configured quota.
        return min((int(v) for v in self.max_messages_per_day.values()), default=0)

    async def check(self, user_id: str, user_type: str) -> int:
        """Return messages sent in the window.

        Raises:
            APIError: 429 when the user already sent their daily allowance
        """
        limit = self.limit_for(user_type)
        count = await self.repository.get_message_count_by_user_id(user_id, since=window_start_iso())
        if count >= limit:
            logger.info("quota_exceeded user_id=%s user_type=%s count=%d limit=%d", user_id, user_type, count, limit)
            raise APIError(
                429,
                "MESSAGE_QUOTA_EXCEEDED",
                "Daily message limit reached",
                {"limit": limit, "window_hours": int(QUOTA_WINDOW.total_seconds() // 3600)},
                kind=ErrorKind.RATE_LIMITED,
            )
        return count
