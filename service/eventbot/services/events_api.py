"""
EventApp API client.

Thin wrapper over the EventApp REST API, called from bot handlers with a
bearer token minted for the linked user.
"""

from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Dict, List, Optional

import httpx

from eventbot.exceptions import UpstreamApiError
from eventbot.services.tokens import BearerToken
from eventbot.telegram_bot.logging_config import bot_logger as logger


@dataclass
class Event:
    title: str
    date: Optional[datetime]
    location: str
    raw_date: Optional[str] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Event":
        raw_date = data.get("date")
        return cls(
            title=data.get("title") or "Untitled event",
            date=_parse_date(raw_date),
            location=data.get("location") or "TBA",
            raw_date=str(raw_date) if raw_date is not None else None,
        )

    def display_date(self) -> str:
        if self.date is not None:
            return self.date.strftime("%d.%m.%Y")
        return self.raw_date or "Date TBA"


def _parse_date(value: Any) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None


class EventAppClient:
    """
    Client for the EventApp API.

    Errors of any kind (network, timeout, non-2xx, bad JSON) surface as
    UpstreamApiError; nothing is retried.
    """

    def __init__(self, base_url: str, timeout: float = 30.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url.rstrip("/")
        self.client = httpx.AsyncClient(timeout=timeout, transport=transport)

    async def get_my_events(self, token: BearerToken | str) -> List[Event]:
        """Call GET /api/events/my-events on behalf of the token's user."""
        url = f"{self.base_url}/api/events/my-events"
        try:
            response = await self.client.get(
                url,
                headers={"Authorization": f"Bearer {token}"}
            )
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            logger.error(f"EventApp API returned {status} for {url}")
            raise UpstreamApiError(f"EventApp API returned HTTP {status}", url=url, status_code=status) from e
        except httpx.HTTPError as e:
            logger.error(f"EventApp API request failed for {url}: {e}")
            raise UpstreamApiError(f"EventApp API request failed: {e}", url=url) from e
        except ValueError as e:
            logger.error(f"EventApp API returned invalid JSON for {url}")
            raise UpstreamApiError("EventApp API returned invalid JSON", url=url) from e

        events = payload.get("events") if isinstance(payload, dict) else None
        return [Event.from_api(item) for item in events or [] if isinstance(item, dict)]

    async def close(self):
        """Close HTTP client."""
        await self.client.aclose()


# Global instance
_events_client: Optional[EventAppClient] = None


def get_events_client() -> EventAppClient:
    """Get or create EventApp client singleton."""
    global _events_client
    if _events_client is None:
        from eventbot.config import get_settings
        settings = get_settings()
        _events_client = EventAppClient(settings.eventapp_api_url, timeout=settings.eventapp_api_timeout)
    return _events_client


async def close_events_client() -> None:
    global _events_client
    if _events_client is not None:
        await _events_client.close()
        _events_client = None
