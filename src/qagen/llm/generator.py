from __future__ import annotations

import logging
import os
import re
from typing import Any

from ..config import AnthropicConfig
from ..errors import ExternalServiceError, GenerationError
from ..models import GeneratedArtifact, SourceFile
from ..services.http import request_json
from ..utils import log_event

ANTHROPIC_VERSION = "2023-06-01"

DEFAULT_TEST_PATTERNS = """
# Test Generation Patterns

## C# Test Patterns
- Use xUnit framework
- Follow AAA pattern (Arrange, Act, Assert)
- Mock dependencies using Moq
- Test both success and failure scenarios
- Include edge cases and boundary conditions

## JavaScript/TypeScript Test Patterns
- Use Jest framework
- Mock external dependencies
- Test async functions properly
- Include integration tests for API endpoints
- Test error handling

## General Guidelines
- Write clear, descriptive test names
- One assertion per test when possible
- Use meaningful test data
- Clean up resources in teardown
"""

LANGUAGE_BY_EXTENSION = {
    ".cs": "csharp",
    ".js": "javascript",
    ".ts": "typescript",
    ".jsx": "javascript",
    ".tsx": "typescript",
    ".py": "python",
    ".java": "java",
}

TEST_SUFFIX_BY_LANGUAGE = {
    "csharp": ".Tests.cs",
    "javascript": ".test.js",
    "typescript": ".test.ts",
    "python": "_test.py",
    "java": "Test.java",
}

CODE_BLOCK_RE = re.compile(r"```(\w+)?\n(.*?)```", re.DOTALL)


class AnthropicGenerator:
    def __init__(
        self,
        config: AnthropicConfig,
        patterns_path: str | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.config = config
        self.patterns_path = patterns_path
        self.logger = logger or logging.getLogger("qagen.llm")
        self._patterns: str | None = None

    def load_test_patterns(self) -> str:
        if self._patterns is not None:
            return self._patterns
        if self.patterns_path and os.path.isfile(self.patterns_path):
            with open(self.patterns_path, "r", encoding="utf-8") as handle:
                self._patterns = handle.read()
            log_event(self.logger, logging.INFO, "test_patterns_loaded", path=self.patterns_path)
        else:
            log_event(
                self.logger,
                logging.WARNING,
                "test_patterns_missing",
                path=self.patterns_path,
                fallback="default",
            )
            self._patterns = DEFAULT_TEST_PATTERNS
        return self._patterns

    def generate(self, source: SourceFile, context: str) -> list[GeneratedArtifact]:
        if not self.config.api_key:
            raise GenerationError("anthropic api key is not configured")
        prompt = build_prompt(source, context, self.load_test_patterns())
        payload = {
            "model": self.config.model,
            "max_tokens": self.config.max_tokens,
            "messages": [{"role": "user", "content": prompt}],
        }
        headers = {"x-api-key": self.config.api_key, "anthropic-version": ANTHROPIC_VERSION}
        try:
            response = request_json(
                "POST",
                f"{self.config.base_url}/messages",
                headers,
                payload,
                self.config.timeout_seconds,
            )
        except ExternalServiceError as exc:
            raise GenerationError(str(exc), status=exc.status, transient=exc.transient) from exc
        return parse_response(_read_anthropic(response), source.path)


def _read_anthropic(response: Any) -> str:
    content = response.get("content") if isinstance(response, dict) else None
    if not content:
        raise GenerationError("anthropic_missing_content")
    return "".join(
        block.get("text") or ""
        for block in content
        if isinstance(block, dict) and block.get("type", "text") == "text"
    )


def build_prompt(source: SourceFile, context: str, patterns: str) -> str:
    return f"""You are a senior software engineer writing comprehensive unit tests.

CONTEXT:
Jira ticket context: {context}
File: {source.path}
Recent changes (git patch):
{source.patch or 'No patch available'}

TEST DOCUMENTATION:
{patterns}

SOURCE CODE:
```
{source.content}
```

TASK:
Generate comprehensive unit tests for the above code, focusing on:
1. The recent changes highlighted in the patch
2. Critical business logic and edge cases
3. Error handling and validation
4. Integration points and dependencies

REQUIREMENTS:
- Follow the test patterns from the documentation
- Generate complete, runnable test files
- Include proper setup/teardown
- Test both positive and negative scenarios
- Use appropriate mocking for dependencies
- Write clear, descriptive test names

OUTPUT FORMAT:
Provide the complete test file content wrapped in code blocks with appropriate language tags.
Include any necessary imports and setup code.

Generate the tests now:"""


def parse_response(text: str, original_path: str) -> list[GeneratedArtifact]:
    """Split a model reply into one artifact per fenced code block.

    A reply without fences is taken as a single artifact.
    """
    artifacts: list[GeneratedArtifact] = []
    for match in CODE_BLOCK_RE.finditer(text):
        language = match.group(1) or detect_language(original_path)
        code = match.group(2).strip()
        if code:
            artifacts.append(
                GeneratedArtifact(
                    language=language,
                    code=code,
                    filename=derive_test_filename(original_path, language),
                )
            )
    if not artifacts and text.strip():
        language = detect_language(original_path)
        artifacts.append(
            GeneratedArtifact(
                language=language,
                code=text.strip(),
                filename=derive_test_filename(original_path, language),
            )
        )
    return artifacts


def detect_language(path: str) -> str:
    _, ext = os.path.splitext(path)
    return LANGUAGE_BY_EXTENSION.get(ext.lower(), "text")


def derive_test_filename(original_path: str, language: str) -> str:
    base, ext = os.path.splitext(os.path.basename(original_path))
    suffix = TEST_SUFFIX_BY_LANGUAGE.get(language.lower(), f".test{ext}")
    return base + suffix


