from __future__ import annotations

import base64
import logging
import posixpath
import re
import urllib.parse
from typing import Any

from ..config import GithubConfig
from ..errors import ExternalServiceError
from ..models import ChangedFile, ExternalReference
from .http import request_json

TESTABLE_EXTENSIONS = (".cs", ".js", ".ts", ".jsx", ".tsx", ".py", ".java")
EXCLUDE_PATTERNS = (
    re.compile(r"\.(test|spec)s?\.", re.IGNORECASE),
    re.compile(r"^(test|spec)s?[_.\-]", re.IGNORECASE),
    re.compile(r"[_\-](test|spec)s?\.", re.IGNORECASE),
    re.compile(r"(Test|Spec)s?\.[^.]+$"),
    re.compile(r"^(Test|Spec)[A-Z]"),
    re.compile(r"\.config\."),
    re.compile(r"\.json$"),
    re.compile(r"\.md$"),
    re.compile(r"\.txt$"),
)
TEST_DIRECTORIES = {"test", "tests", "__tests__", "spec", "specs"}
PER_PAGE = 100
MAX_PAGES = 30


class GitHubClient:
    def __init__(self, config: GithubConfig, logger: logging.Logger | None = None) -> None:
        self.config = config
        self.logger = logger or logging.getLogger("qagen.github")

    def list_changed_files(self, reference: ExternalReference) -> list[ChangedFile]:
        files: list[ChangedFile] = []
        for page in range(1, MAX_PAGES + 1):
            url = (
                f"{self._repo_url(reference)}/pulls/{reference.number}/files"
                f"?per_page={PER_PAGE}&page={page}"
            )
            response = request_json("GET", url, self._headers(), None, self.config.timeout_seconds)
            if not isinstance(response, list):
                raise ExternalServiceError("unexpected_pull_files_response")
            files.extend(_to_changed_file(item) for item in response)
            if len(response) < PER_PAGE:
                break
        return files

    def fetch_file_content(self, path: str, reference: ExternalReference) -> str:
        """Return the decoded file content; raises NotFoundError on 404."""
        quoted = urllib.parse.quote(path)
        ref = urllib.parse.quote(self.config.content_ref)
        url = f"{self._repo_url(reference)}/contents/{quoted}?ref={ref}"
        response = request_json("GET", url, self._headers(), None, self.config.timeout_seconds)
        if not isinstance(response, dict) or "content" not in response:
            raise ExternalServiceError(f"unexpected_contents_response: {path}")
        content = response.get("content") or ""
        if response.get("encoding") == "base64":
            return base64.b64decode(content).decode("utf-8", errors="replace")
        return str(content)

    def _repo_url(self, reference: ExternalReference) -> str:
        return f"{self.config.api_url}/repos/{self.config.owner}/{reference.repo}"

    def _headers(self) -> dict[str, str]:
        headers = {
            "Accept": "application/vnd.github.v3+json",
            "User-Agent": self.config.user_agent,
        }
        if self.config.token:
            headers["Authorization"] = f"token {self.config.token}"
        return headers


def _to_changed_file(item: dict[str, Any]) -> ChangedFile:
    return ChangedFile(
        path=str(item.get("filename") or ""),
        status=str(item.get("status") or ""),
        patch=item.get("patch"),
        additions=int(item.get("additions") or 0),
        deletions=int(item.get("deletions") or 0),
    )


def filter_testable_files(files: list[ChangedFile]) -> list[ChangedFile]:
    testable: list[ChangedFile] = []
    for changed in files:
        name = posixpath.basename(changed.path)
        if not name.lower().endswith(TESTABLE_EXTENSIONS):
            continue
        if any(pattern.search(name) for pattern in EXCLUDE_PATTERNS):
            continue
        directories = changed.path.lower().split("/")[:-1]
        if TEST_DIRECTORIES.intersection(directories):
            continue
        if changed.status == "removed":
            continue
        testable.append(changed)
    return testable
