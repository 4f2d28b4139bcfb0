"""Route matching for request classification.

Compiles path patterns once, at import or startup time, so per-request checks
only run precompiled regexes.

Pattern syntax (path-to-regexp style):
    "/sign-in"        exact match ("/sign-in" or "/sign-in/")
    "/sign-in(.*)"    prefix match (the group is inlined as a regex)
    "/users/:id"      one path segment
    "/files/:path*"   zero or more segments (also "?" and "+")
    "\\(" escapes a special character

Matching is case-insensitive for string patterns. Compiled ``re.Pattern``
objects are used as given (``search`` semantics). A plain callable taking
the path is also accepted; it is called on every test.

Usage:
    is_public = create_route_matcher(["/sign-in(.*)", "/sign-up(.*)"])
    if is_public(request.url.path):
        ...
"""

import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass

PathPredicate = Callable[[str], bool]
RoutePattern = str | re.Pattern[str]
RouteMatcherParam = RoutePattern | Iterable[RoutePattern] | PathPredicate | None

# Default segment pattern for ":name" parameters
_SEGMENT = "[^/#?]+?"
_NAME_CHARS = frozenset(
    "abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789_"
)
_MODIFIERS = frozenset("?*+")


class RoutePatternError(ValueError):
    """Raised when a path pattern string cannot be compiled."""

    def __init__(self, pattern: str, reason: str) -> None:
        self.pattern = pattern
        self.reason = reason
        super().__init__(f"Invalid route pattern {pattern!r}: {reason}")


@dataclass(frozen=True)
class _Param:
    pattern: str
    prefix: str = ""
    modifier: str = ""


def _read_group(source: str, start: int) -> tuple[str, int]:
    """Read a balanced "( ... )" group starting at ``start``.

    Returns:
        Tuple of (group body, index after the closing parenthesis).

    Raises:
        RoutePatternError: If the group is unbalanced or empty.
    """
    depth = 1
    i = start + 1
    body: list[str] = []
    while i < len(source):
        char = source[i]
        if char == "\\":
            body.append(source[i : i + 2])
            i += 2
            continue
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
            if depth == 0:
                break
        body.append(char)
        i += 1

    if depth != 0:
        raise RoutePatternError(source, f"unbalanced group at {start}")
    if not body:
        raise RoutePatternError(source, f"empty group at {start}")
    return "".join(body), i + 1


def _tokenize(source: str) -> list[str | _Param]:
    tokens: list[str | _Param] = []
    literal: list[str] = []
    i = 0

    def take_prefix() -> str:
        if literal and literal[-1] == "/":
            literal.pop()
            return "/"
        return ""

    def flush() -> None:
        if literal:
            tokens.append("".join(literal))
            literal.clear()

    while i < len(source):
        char = source[i]

        if char == "\\":
            if i + 1 >= len(source):
                raise RoutePatternError(source, "dangling escape at end of pattern")
            literal.append(source[i + 1])
            i += 2
            continue

        if char == ":":
            j = i + 1
            while j < len(source) and source[j] in _NAME_CHARS:
                j += 1
            if j == i + 1:
                raise RoutePatternError(source, f"missing parameter name at {i}")
            pattern = _SEGMENT
            if j < len(source) and source[j] == "(":
                pattern, j = _read_group(source, j)
            prefix = take_prefix()
            flush()
            modifier = ""
            if j < len(source) and source[j] in _MODIFIERS:
                modifier = source[j]
                j += 1
            tokens.append(_Param(pattern=pattern, prefix=prefix, modifier=modifier))
            i = j
            continue

        if char == "(":
            pattern, j = _read_group(source, i)
            prefix = take_prefix()
            flush()
            modifier = ""
            if j < len(source) and source[j] in _MODIFIERS:
                modifier = source[j]
                j += 1
            tokens.append(_Param(pattern=pattern, prefix=prefix, modifier=modifier))
            i = j
            continue

        if char == ")":
            raise RoutePatternError(source, f"unbalanced ')' at {i}")

        literal.append(char)
        i += 1

    flush()
    return tokens


def _param_to_regex(param: _Param) -> str:
    prefix = re.escape(param.prefix)
    pattern = param.pattern
    if param.modifier in ("+", "*"):
        repeated = f"(?:{prefix}(?:{pattern})(?:{prefix}(?:{pattern}))*)"
        return repeated + ("?" if param.modifier == "*" else "")
    if param.modifier == "?":
        return f"(?:{prefix}(?:{pattern}))?"
    return f"{prefix}(?:{pattern})"


def compile_path(source: str) -> re.Pattern[str]:
    """Compile one path pattern string into an anchored regex.

    The regex matches the whole path and tolerates a single trailing
    delimiter, so "/dashboard" matches "/dashboard" and "/dashboard/".

    Args:
        source: Pattern string.

    Returns:
        Compiled, case-insensitive regex.

    Raises:
        RoutePatternError: If the pattern is malformed.
    """
    parts = [
        re.escape(token) if isinstance(token, str) else _param_to_regex(token)
        for token in _tokenize(source)
    ]
    expression = "^" + "".join(parts) + "[/#?]?$"
    try:
        return re.compile(expression, re.IGNORECASE)
    except re.error as exc:
        raise RoutePatternError(source, str(exc)) from exc


class RouteMatcher:
    """Precompiled set of route patterns.

    ``test(path)`` (or calling the matcher) is True if any pattern matches.
    """

    def __init__(self, patterns: Iterable[RoutePattern]) -> None:
        self._regexes: tuple[re.Pattern[str], ...] = tuple(
            p if isinstance(p, re.Pattern) else compile_path(p) for p in patterns
        )

    @property
    def regexes(self) -> tuple[re.Pattern[str], ...]:
        return self._regexes

    def test(self, path: str) -> bool:
        return any(regex.search(path) for regex in self._regexes)

    def __call__(self, path: str) -> bool:
        return self.test(path)

    def __repr__(self) -> str:
        return f"RouteMatcher({[r.pattern for r in self._regexes]!r})"


def create_route_matcher(routes: RouteMatcherParam) -> PathPredicate:
    """Create a matcher for runtime checks.

    Call this at module scope (or once at startup), never per request, so
    the patterns are compiled a single time.

    Args:
        routes: A pattern string, a compiled regex, a list of those, or a
            predicate on the path. Falsy entries are ignored.

    Returns:
        Callable taking a path and returning whether it matches. For
        pattern input this is a RouteMatcher.

    Raises:
        RoutePatternError: If any pattern string is malformed.
    """
    if callable(routes):
        return routes
    if routes is None or isinstance(routes, str | re.Pattern):
        candidates: Iterable[RoutePattern] = [routes] if routes else []
    else:
        candidates = routes
    return RouteMatcher(p for p in candidates if p)
