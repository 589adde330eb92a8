"""Cache key derivation."""

from datetime import datetime, timezone

from quizarena.cache.keys import (
    build_cache_key,
    leaderboard_key,
    progression_key,
    top_players_key,
    user_rank_key,
)

START = datetime(2024, 5, 13, tzinfo=timezone.utc)


class TestBuildCacheKey:
    def test_parameter_order_does_not_matter(self):
        assert build_cache_key("lb:", "weekly", limit=10, offset=0) == build_cache_key(
            "lb:", "weekly", offset=0, limit=10
        )

    def test_list_order_does_not_matter(self):
        assert build_cache_key("x", ids=[3, 1, 2]) == build_cache_key("x", ids=[2, 3, 1])

    def test_none_values_dropped(self):
        assert build_cache_key("x", "a", category=None) == "x:a"

    def test_bools_normalised(self):
        assert build_cache_key("x", active=True) == "x:active=1"


class TestNamedKeys:
    def test_progression(self):
        assert progression_key(42) == "progression:42"

    def test_leaderboard_includes_period_and_page(self):
        key = leaderboard_key("weekly", START, 3, limit=50, offset=0)
        assert key == f"leaderboard:weekly:{int(START.timestamp())}:category=3:limit=50:offset=0"

    def test_global_and_category_boards_differ(self):
        assert leaderboard_key("weekly", START, limit=50, offset=0) != leaderboard_key(
            "weekly", START, 1, limit=50, offset=0
        )

    def test_user_rank(self):
        assert user_rank_key(7, "daily", START).startswith("user_rank:7:daily:")

    def test_top_players(self):
        assert top_players_key(10) == "top_players:limit=10"
