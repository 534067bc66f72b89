from __future__ import annotations

from typing import Any
import logging

import requests

from .types import RunResult

logger = logging.getLogger(__name__)


def summary_payload(result: RunResult) -> dict[str, Any]:
    outcomes = result.host_outcomes()
    failed = sorted(name for name, outcome in outcomes.items() if outcome != "success")
    if result.success:
        text = f"Playbook completed on {len(outcomes)} host(s)"
    else:
        text = f"Playbook failed on {len(failed)} of {len(outcomes)} host(s): {', '.join(failed)}"
        if result.aborted:
            text = f"{text} (aborted)"
    return {"text": text, "success": result.success, "hosts": outcomes}


class WebhookNotifier:
    """Posts the run summary to a chat-style incoming webhook.

    Delivery is best-effort: a failed post is logged and the run outcome
    is left untouched.
    """

    def __init__(self, url: str, *, timeout: float = 10.0, session=None):
        self.url = url
        self.timeout = timeout
        self.session = session or requests

    def send(self, result: RunResult) -> bool:
        payload = summary_payload(result)
        logger.debug("notify url=%s payload=%s", self.url, payload)
        try:
            response = self.session.post(self.url, json=payload, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as exc:
            logger.warning("notification to %s failed: %s", self.url, exc)
            return False
        logger.info("notification sent url=%s status=%s", self.url, response.status_code)
        return True
