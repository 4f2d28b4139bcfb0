"""Tests for route pattern compilation and matching."""

import re

import pytest

from gatehouse.core.route_matcher import (
    RouteMatcher,
    RoutePatternError,
    compile_path,
    create_route_matcher,
)

# =============================================================================
# compile_path
# =============================================================================


class TestCompilePath:
    """Tests for compile_path."""

    def test_exact_path_matches_itself(self) -> None:
        assert compile_path("/sign-in").match("/sign-in")

    def test_exact_path_tolerates_one_trailing_slash(self) -> None:
        assert compile_path("/sign-in").match("/sign-in/")

    def test_exact_path_does_not_match_children(self) -> None:
        assert compile_path("/sign-in").match("/sign-in/sso") is None

    def test_prefix_group_matches_children(self) -> None:
        regex = compile_path("/sign-in(.*)")
        assert regex.match("/sign-in")
        assert regex.match("/sign-in/sso/callback")

    def test_literal_dots_are_escaped(self) -> None:
        regex = compile_path("/robots.txt")
        assert regex.match("/robots.txt")
        assert regex.match("/robotsXtxt") is None

    def test_named_parameter_matches_one_segment(self) -> None:
        regex = compile_path("/users/:id")
        assert regex.match("/users/42")
        assert regex.match("/users/42/posts") is None
        assert regex.match("/users") is None

    def test_parameter_with_custom_pattern(self) -> None:
        regex = compile_path(r"/users/:id(\d+)")
        assert regex.match("/users/42")
        assert regex.match("/users/abc") is None

    def test_zero_or_more_parameter(self) -> None:
        regex = compile_path("/files/:path*")
        assert regex.match("/files")
        assert regex.match("/files/a")
        assert regex.match("/files/a/b/c")

    def test_one_or_more_parameter(self) -> None:
        regex = compile_path("/files/:path+")
        assert regex.match("/files") is None
        assert regex.match("/files/a/b")

    def test_optional_parameter(self) -> None:
        regex = compile_path("/docs/:page?")
        assert regex.match("/docs")
        assert regex.match("/docs/intro")
        assert regex.match("/docs/intro/more") is None

    def test_matching_is_case_insensitive(self) -> None:
        assert compile_path("/Dashboard").match("/dashboard")

    def test_escaped_parenthesis_is_literal(self) -> None:
        regex = compile_path(r"/a\(b\)")
        assert regex.match("/a(b)")

    def test_negative_lookahead_group(self) -> None:
        regex = compile_path("/((?!api|_next/static).*)")
        assert regex.match("/dashboard")
        assert regex.match("/api/auth/get-session") is None
        assert regex.match("/_next/static/chunk.js") is None

    @pytest.mark.parametrize(
        "pattern",
        ["/users/:", "/a(b", "/a)b", "/a()", "/trailing\\"],
    )
    def test_malformed_patterns_raise(self, pattern: str) -> None:
        with pytest.raises(RoutePatternError) as exc_info:
            compile_path(pattern)
        assert exc_info.value.pattern == pattern

    def test_invalid_regex_group_raises_route_pattern_error(self) -> None:
        with pytest.raises(RoutePatternError):
            compile_path("/a([)")

    def test_route_pattern_error_is_value_error(self) -> None:
        with pytest.raises(ValueError):
            compile_path("/a(b")


# =============================================================================
# create_route_matcher
# =============================================================================


class TestCreateRouteMatcher:
    """Tests for create_route_matcher."""

    def test_list_of_prefix_patterns(self) -> None:
        matcher = create_route_matcher(["/sign-in(.*)", "/sign-up(.*)"])
        assert matcher("/sign-in")
        assert matcher("/sign-up/step-2")
        assert not matcher("/dashboard")

    def test_single_string_pattern(self) -> None:
        matcher = create_route_matcher("/settings(.*)")
        assert matcher("/settings/profile")
        assert not matcher("/set")

    def test_compiled_regex_is_used_as_given(self) -> None:
        matcher = create_route_matcher(re.compile(r"^/admin"))
        assert matcher("/admin/users")
        assert not matcher("/Admin/users")

    def test_regex_uses_search_semantics(self) -> None:
        matcher = create_route_matcher([re.compile(r"/edit$")])
        assert matcher("/posts/1/edit")

    def test_callable_is_returned_unchanged(self) -> None:
        def predicate(path: str) -> bool:
            return path.startswith("/x")

        assert create_route_matcher(predicate) is predicate

    def test_empty_input_never_matches(self) -> None:
        assert not create_route_matcher([])("/anything")
        assert not create_route_matcher(None)("/anything")
        assert not create_route_matcher("")("/anything")

    def test_falsy_entries_are_ignored(self) -> None:
        matcher = create_route_matcher(["", "/about"])
        assert isinstance(matcher, RouteMatcher)
        assert len(matcher.regexes) == 1
        assert matcher("/about")

    def test_mixed_strings_and_regexes(self) -> None:
        matcher = create_route_matcher(["/about", re.compile(r"^/blog/\d+$")])
        assert matcher("/about")
        assert matcher("/blog/12")
        assert not matcher("/blog/new")

    def test_malformed_pattern_fails_at_creation(self) -> None:
        with pytest.raises(RoutePatternError):
            create_route_matcher(["/ok", "/broken("])

    def test_test_method_matches_call(self) -> None:
        matcher = create_route_matcher(["/a"])
        assert isinstance(matcher, RouteMatcher)
        assert matcher.test("/a") is matcher("/a")
