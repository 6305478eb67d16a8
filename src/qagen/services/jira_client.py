from __future__ import annotations

import base64
import logging
import re
import urllib.parse
from typing import Any

import jsonschema

from ..config import JiraConfig
from ..errors import ExternalServiceError
from ..models import ExternalReference, WorkItem
from ..utils import log_event
from .http import request_json

SEARCH_FIELDS = "key,summary,description,status,updated"

SEARCH_RESPONSE_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "issues": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["key"],
                "properties": {
                    "key": {"type": "string"},
                    "fields": {"type": "object"},
                },
            },
        },
    },
}

PR_URL_RE = re.compile(
    r"(?:https?://)?[\w.-]+/([\w.-]+)/([\w.-]+)/pull/(\d+)",
    re.IGNORECASE,
)


class JiraClient:
    def __init__(self, config: JiraConfig, logger: logging.Logger | None = None) -> None:
        self.config = config
        self.logger = logger or logging.getLogger("qagen.jira")

    def build_jql(self) -> str:
        projects = self.config.projects
        if len(projects) > 1:
            project_query = f"project IN ({','.join(projects)})"
        else:
            project_query = f"project={projects[0] if projects else ''}"
        return f'{project_query} AND status="{self.config.status}"'

    def fetch_candidates(self) -> list[WorkItem]:
        query = urllib.parse.urlencode(
            {
                "jql": self.build_jql(),
                "fields": SEARCH_FIELDS,
                "maxResults": self.config.max_results,
            }
        )
        url = f"{self.config.base_url}/rest/api/3/search?{query}"
        response = request_json("GET", url, self._headers(), None, self.config.timeout_seconds)
        try:
            jsonschema.validate(response, SEARCH_RESPONSE_SCHEMA)
        except jsonschema.ValidationError as exc:
            raise ExternalServiceError(f"unexpected_search_response: {exc.message}") from exc
        issues = response.get("issues") or []
        return [issue_to_work_item(issue) for issue in issues[: self.config.max_results]]

    def append_comment(self, ticket_key: str, text: str) -> bool:
        url = f"{self.config.base_url}/rest/api/3/issue/{urllib.parse.quote(ticket_key)}/comment"
        payload = {
            "body": {
                "type": "doc",
                "version": 1,
                "content": [
                    {
                        "type": "paragraph",
                        "content": [{"type": "text", "text": text}],
                    }
                ],
            }
        }
        try:
            request_json("POST", url, self._headers(), payload, self.config.timeout_seconds)
        except ExternalServiceError as exc:
            log_event(
                self.logger,
                logging.WARNING,
                "jira_comment_failed",
                ticket=ticket_key,
                error=str(exc),
            )
            return False
        return True

    def _headers(self) -> dict[str, str]:
        credentials = f"{self.config.email}:{self.config.token}".encode("utf-8")
        return {"Authorization": "Basic " + base64.b64encode(credentials).decode("ascii")}


def issue_to_work_item(issue: dict[str, Any]) -> WorkItem:
    fields = issue.get("fields") or {}
    return WorkItem(
        key=str(issue.get("key")),
        summary=str(fields.get("summary") or ""),
        description=adf_to_text(fields.get("description")),
    )


def adf_to_text(node: Any) -> str:
    """Flatten an Atlassian Document Format node (or plain string) to text."""
    if node is None:
        return ""
    if isinstance(node, str):
        return node
    if isinstance(node, list):
        return " ".join(part for part in (adf_to_text(item) for item in node) if part)
    if not isinstance(node, dict):
        return str(node)
    node_type = node.get("type")
    if node_type == "text":
        return str(node.get("text") or "")
    if node_type == "inlineCard":
        return str((node.get("attrs") or {}).get("url") or "")
    parts = []
    for mark in node.get("marks") or []:
        href = (mark.get("attrs") or {}).get("href") if isinstance(mark, dict) else None
        if href:
            parts.append(str(href))
    parts.append(adf_to_text(node.get("content")))
    return " ".join(part for part in parts if part)


def extract_reference(item: WorkItem) -> ExternalReference | None:
    text = f"{item.summary} {item.description}"
    match = PR_URL_RE.search(text)
    if not match:
        return None
    return ExternalReference(
        repo=match.group(2),
        number=int(match.group(3)),
        url=match.group(0),
        owner=match.group(1),
    )


def is_target_repo(reference: ExternalReference, repo: str, owner: str | None = None) -> bool:
    if reference.repo.lower() != repo.lower():
        return False
    if owner and reference.owner:
        return reference.owner.lower() == owner.lower()
    return True
