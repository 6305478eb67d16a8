from .generator import (
    DEFAULT_TEST_PATTERNS,
    AnthropicGenerator,
    build_prompt,
    detect_language,
    parse_response,
    derive_test_filename,
)

__all__ = [
    "DEFAULT_TEST_PATTERNS",
    "AnthropicGenerator",
    "build_prompt",
    "detect_language",
    "parse_response",
    "derive_test_filename",
]
