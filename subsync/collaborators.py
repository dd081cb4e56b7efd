"""
External collaborators consumed by the coordinator.

The purchase gate decides whether another active record may be added; the
service catalog resolves a service name to a cancellation page. Both are
injected, so an application can plug in a real store integration or a
richer catalog.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, Optional, Protocol, runtime_checkable

from subsync.domain.models import Category


@runtime_checkable
class PurchaseGate(Protocol):
    def can_add_record(self, current_active_count: int) -> bool:
        ...


@runtime_checkable
class ServiceCatalog(Protocol):
    def find_cancellation_reference(self, service_name: str) -> Optional[str]:
        ...


@dataclass(frozen=True)
class FreeTierGate:
    """Allows `limit` active records unless the full version is unlocked."""

    limit: int = 4
    unlocked: bool = False

    def can_add_record(self, current_active_count: int) -> bool:
        return self.unlocked or current_active_count < self.limit


@dataclass(frozen=True)
class CatalogService:
    name: str
    category: Category
    typical_cost: float
    cancellation_url: Optional[str] = None


DEFAULT_SERVICES = (
    CatalogService("Netflix", Category.STREAMING, 12.99, "https://www.netflix.com/cancelplan"),
    CatalogService("Disney+", Category.STREAMING, 8.99, "https://www.disneyplus.com/account/subscription"),
    CatalogService("YouTube Premium", Category.STREAMING, 11.99, "https://www.youtube.com/paid_memberships"),
    CatalogService("Spotify", Category.MUSIC, 10.99, "https://www.spotify.com/account/subscription/"),
    CatalogService("Tidal", Category.MUSIC, 10.99, "https://tidal.com/settings/subscription"),
    CatalogService("Microsoft 365", Category.SOFTWARE, 7.00, "https://account.microsoft.com/services"),
    CatalogService("Adobe Creative Cloud", Category.SOFTWARE, 62.99, "https://account.adobe.com/plans"),
    CatalogService("Notion", Category.SOFTWARE, 10.00, "https://www.notion.so/my-account"),
    CatalogService("Dropbox", Category.CLOUD, 11.99, "https://www.dropbox.com/account/plan"),
    CatalogService("ChatGPT Plus", Category.SOFTWARE, 20.00, "https://chat.openai.com/settings/subscription"),
)


class StaticServiceCatalog:
    """Case-insensitive lookup over a fixed list of services."""

    def __init__(self, services: Iterable[CatalogService] = DEFAULT_SERVICES) -> None:
        self._by_name: Dict[str, CatalogService] = {s.name.lower(): s for s in services}

    def find(self, service_name: str) -> Optional[CatalogService]:
        return self._by_name.get(service_name.strip().lower())

    def find_cancellation_reference(self, service_name: str) -> Optional[str]:
        service = self.find(service_name)
        return service.cancellation_url if service else None


__all__ = [
    "CatalogService",
    "FreeTierGate",
    "PurchaseGate",
    "ServiceCatalog",
    "StaticServiceCatalog",
]
