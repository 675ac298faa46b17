from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class StripeWebhookInput:
    signature: str
    payload: bytes


@dataclass(frozen=True)
class StripeWebhookOutput:
    event_id: str
    event_type: str
    handled: bool
    matched: bool = True
    duplicate: bool = False
