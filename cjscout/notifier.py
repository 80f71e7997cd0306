"""Notification adapters."""

from __future__ import annotations

import logging
import os
from typing import Optional

import requests

from .models import SearchResult

LOGGER = logging.getLogger(__name__)


def run_summary(result: SearchResult) -> str:
    debug = result.debug
    lines = [
        result.message,
        f"Priced: {result.count} | Processed: {debug.candidates_processed} | "
        f"Success rate: {debug.success_rate:.0%}",
        f"Stop reason: {result.stop_reason} | Duration: {result.duration_seconds:.0f}s",
    ]
    if debug.errors:
        lines.append("Errors: " + ", ".join(f"{k}={v}" for k, v in sorted(debug.errors.items())))
    return "\n".join(lines)


class Notifier:
    def send(self, title: str, body: str) -> None:
        print(f"[NOTIFY] {title}: {body}")

    def send_result(self, job_id: str, result: SearchResult) -> None:
        status = "OK" if result.ok else "FAILED"
        self.send(f"Search {job_id} {status}", run_summary(result))


class DiscordNotifier(Notifier):
    def __init__(self, webhook_url: Optional[str] = None) -> None:
        self.webhook_url = webhook_url or os.getenv("DISCORD_WEBHOOK_URL")

    def send(self, title: str, body: str) -> None:
        if not self.webhook_url:
            return
        payload = {"content": f"**{title}**\n{body}"}
        try:
            requests.post(self.webhook_url, json=payload, timeout=10)
        except requests.RequestException as e:
            LOGGER.warning("Discord notification failed: %s", e)
