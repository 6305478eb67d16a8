from __future__ import annotations

import logging

from .config import WebhookConfig
from .errors import ExternalServiceError
from .utils import log_event, utc_now_iso
from .services.http import request_json
from .validators import is_valid_url


def build_payload(
    ticket_key: str, pr_number: int, artifact_count: int, output_path: str
) -> dict[str, object]:
    return {
        "key": ticket_key,
        "reference": pr_number,
        "artifactCount": artifact_count,
        "timestamp": utc_now_iso(),
        "outputPath": output_path,
    }


def notify_test_runner(
    config: WebhookConfig,
    ticket_key: str,
    pr_number: int,
    artifact_count: int,
    output_path: str,
    logger: logging.Logger | None = None,
) -> bool:
    """Best-effort POST to the downstream test runner. Never raises."""
    logger = logger or logging.getLogger("qagen.notify")
    url = config.test_runner_url
    if not url:
        log_event(logger, logging.INFO, "webhook_not_configured", ticket=ticket_key)
        return False
    if not is_valid_url(url):
        log_event(logger, logging.ERROR, "webhook_invalid_url", ticket=ticket_key, url=url)
        return False
    payload = build_payload(ticket_key, pr_number, artifact_count, output_path)
    try:
        request_json("POST", url, None, payload, config.timeout_seconds)
    except ExternalServiceError as exc:
        log_event(
            logger,
            logging.ERROR,
            "webhook_failed",
            ticket=ticket_key,
            status=exc.status,
            error=str(exc),
        )
        return False
    log_event(logger, logging.INFO, "webhook_sent", ticket=ticket_key, artifacts=artifact_count)
    return True
