from __future__ import annotations

import hashlib
import json
from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_email(email: str) -> str:
    return email.strip().lower()


def customer_idempotency_key(*, email: str, name: str, metadata: dict[str, str]) -> str:
    raw = json.dumps(
        {"email": normalize_email(email), "name": name, "metadata": metadata},
        sort_keys=True,
    )
    return "customer-create-" + hashlib.sha256(raw.encode("utf-8")).hexdigest()


def non_null(**values) -> dict:
    return {key: value for key, value in values.items() if value is not None}
