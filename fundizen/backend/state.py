from __future__ import annotations

import secrets
from dataclasses import dataclass
from typing import Optional

from cachetools import TTLCache

from .config import settings
from .services.donation_flow import DonationOrchestrator


@dataclass
class FlowEntry:
    flow: DonationOrchestrator
    owner: Optional[str]


# Live donation flows, keyed by an unguessable id. Abandoned flows expire.
flows: TTLCache[str, FlowEntry] = TTLCache(maxsize=settings.flow_cache_size, ttl=settings.flow_ttl)


def register_flow(flow: DonationOrchestrator, owner: Optional[str]) -> str:
    flow_id = secrets.token_urlsafe(16)
    flows[flow_id] = FlowEntry(flow=flow, owner=owner)
    return flow_id


def lookup_flow(flow_id: str, owner: Optional[str]) -> Optional[DonationOrchestrator]:
    """Return the flow only to the principal (or anonymous caller) that started it."""
    entry = flows.get(flow_id)
    if entry is None or entry.owner != owner:
        return None
    return entry.flow


def touch_flow(flow_id: str) -> None:
    entry = flows.get(flow_id)
    if entry is not None:
        flows[flow_id] = entry
