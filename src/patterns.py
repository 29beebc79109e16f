"""Pattern compiler: turns a ScopeConfig into ready-to-use matchers.

Compilation happens once per run, before any record is read. The first
invalid pattern aborts the run with a ConfigurationError naming the option.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from .errors import ConfigurationError
from .models import AI_TOOL_CODERABBIT, AI_TOOL_CURSOR_BUGBOT, AI_TOOL_QODO
from .scope_config import ScopeConfig

# (tool id, config field prefix, option name prefix), in detection order
TOOLS = [
    (AI_TOOL_CODERABBIT, "code_rabbit", "codeRabbit"),
    (AI_TOOL_CURSOR_BUGBOT, "cursor_bugbot", "cursorBugbot"),
    (AI_TOOL_QODO, "qodo", "qodo"),
]


class PatternCache:
    """Compiled regex cache keyed by (pattern, flags).

    Owned by whoever runs the pipeline and passed in explicitly, so separate
    runs (and tests) never share compiled state by accident.
    """

    def __init__(self):
        self._compiled: dict[tuple[str, int], re.Pattern] = {}

    def compile(self, pattern: str, flags: int = 0) -> re.Pattern:
        key = (pattern, flags)
        compiled = self._compiled.get(key)
        if compiled is None:
            compiled = re.compile(pattern, flags)
            self._compiled[key] = compiled
        return compiled

    def __len__(self) -> int:
        return len(self._compiled)


@dataclass
class ToolMatcher:
    """Username and body matchers for one enabled AI tool."""

    tool: str
    username: re.Pattern | None = None
    body: re.Pattern | None = None

    def matches(self, account_id: str, body: str) -> bool:
        if self.username is not None and self.username.search(account_id or ""):
            return True
        if self.body is not None and self.body.search(body or ""):
            return True
        return False


@dataclass
class CompiledPatterns:
    """Matcher bundle for one run."""

    config: ScopeConfig
    tools: list[ToolMatcher] = field(default_factory=list)
    risk_high: re.Pattern | None = None
    risk_medium: re.Pattern | None = None
    risk_low: re.Pattern | None = None
    bug_link: re.Pattern | None = None

    def tool_matcher(self, tool: str) -> ToolMatcher | None:
        for matcher in self.tools:
            if matcher.tool == tool:
                return matcher
        return None


def _compile(cache: PatternCache, option: str, pattern: str, flags: int = 0) -> re.Pattern | None:
    if not pattern:
        return None
    try:
        return cache.compile(pattern, flags)
    except re.error as e:
        raise ConfigurationError(option, f"invalid pattern {pattern!r}: {e}") from e


def compile_patterns(
    config: ScopeConfig | None = None,
    cache: PatternCache | None = None,
) -> CompiledPatterns:
    """Compile every enabled, non-empty pattern in the config.

    A missing config is replaced by ScopeConfig.default(). Usernames are
    escaped and compiled case-insensitively since they identify an account,
    not free text; all other patterns are compiled as authored.
    """
    if config is None:
        config = ScopeConfig.default()
    if cache is None:
        cache = PatternCache()

    compiled = CompiledPatterns(config=config)

    for tool, prefix, option in TOOLS:
        if not getattr(config, f"{prefix}_enabled"):
            continue
        username = getattr(config, f"{prefix}_username")
        pattern = getattr(config, f"{prefix}_pattern")
        matcher = ToolMatcher(
            tool=tool,
            username=_compile(cache, f"{option}Username", re.escape(username) if username else "", re.IGNORECASE),
            body=_compile(cache, f"{option}Pattern", pattern),
        )
        if matcher.username is not None or matcher.body is not None:
            compiled.tools.append(matcher)

    compiled.risk_high = _compile(cache, "riskHighPattern", config.risk_high_pattern)
    compiled.risk_medium = _compile(cache, "riskMediumPattern", config.risk_medium_pattern)
    compiled.risk_low = _compile(cache, "riskLowPattern", config.risk_low_pattern)
    compiled.bug_link = _compile(cache, "bugLinkPattern", config.bug_link_pattern)

    return compiled
