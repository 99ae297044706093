from __future__ import annotations

import re
from typing import Optional, Protocol


class NameMatcher(Protocol):
    def matches(self, name: str) -> bool: ...


class AcceptAll:
    def matches(self, name: str) -> bool:
        return True


class RegexMatcher:
    """按正则过滤信标名称，例如 "^RFstar" """

    def __init__(self, pattern: str, flags: int = 0):
        self.pattern = re.compile(pattern, flags)

    def matches(self, name: str) -> bool:
        return self.pattern.search(name) is not None

    def __repr__(self) -> str:
        return f"RegexMatcher({self.pattern.pattern!r})"


def build_matcher(pattern: Optional[str]) -> NameMatcher:
    if not pattern:
        return AcceptAll()
    return RegexMatcher(pattern)
