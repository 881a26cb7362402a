"""Outbound webhook delivery for action-log rows."""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import os
import time
from typing import Any, Optional

import httpx

from td.config import ProjectConfig
from td.models import ActionLog, format_timestamp, now_utc

logger = logging.getLogger(__name__)

TIMEOUT = 10.0
USER_AGENT = "td-webhook/1"


def get_url(root: str) -> str:
    return os.environ.get("TD_WEBHOOK_URL") or ProjectConfig.load(root).webhook_url


def get_secret(root: str) -> str:
    return os.environ.get("TD_WEBHOOK_SECRET") or ProjectConfig.load(root).webhook_secret


def is_enabled(root: str) -> bool:
    return bool(get_url(root))


def build_payload(project_dir: str, actions: list[ActionLog]) -> dict[str, Any]:
    return {
        "project_dir": project_dir,
        "timestamp": format_timestamp(now_utc()),
        "actions": [
            {
                "id": str(a.id),
                "session_id": a.session_id,
                "action_type": a.action_type,
                "entity_type": a.entity_type,
                "entity_id": a.entity_id,
                "previous_data": a.previous_data,
                "new_data": a.new_data,
                "timestamp": format_timestamp(a.timestamp),
            }
            for a in actions
        ],
    }


def sign(secret: str, timestamp: str, body: bytes) -> str:
    mac = hmac.new(secret.encode("utf-8"), digestmod=hashlib.sha256)
    mac.update(timestamp.encode("ascii"))
    mac.update(b".")
    mac.update(body)
    return "sha256=" + mac.hexdigest()


def dispatch(url: str, secret: str, payload: dict[str, Any],
             transport: Optional[httpx.BaseTransport] = None) -> None:
    """POST the payload; raises ``httpx.HTTPError`` on failure or non-2xx."""
    body = json.dumps(payload).encode("utf-8")
    ts = str(int(time.time()))
    headers = {
        "Content-Type": "application/json",
        "User-Agent": USER_AGENT,
        "X-TD-Timestamp": ts,
    }
    if secret:
        headers["X-TD-Signature"] = sign(secret, ts, body)
    with httpx.Client(timeout=TIMEOUT, transport=transport) as client:
        resp = client.post(url, content=body, headers=headers)
        resp.raise_for_status()


def deliver(root: str, actions: list[ActionLog],
            transport: Optional[httpx.BaseTransport] = None) -> bool:
    """Send ``actions`` if a webhook is configured; failures are only logged."""
    url = get_url(root)
    if not url or not actions:
        return False
    try:
        dispatch(url, get_secret(root), build_payload(root, actions), transport=transport)
    except httpx.HTTPError as e:
        logger.warning("webhook delivery to %s failed: %s", url, e)
        return False
    logger.debug("webhook delivered %d actions to %s", len(actions), url)
    return True
