"""Progression API endpoints.

Thin adapters over the service container: parse, delegate, shape.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from quizarena.container import ServiceContainer
from quizarena.dependencies import get_container, get_current_user_id
from quizarena.leaderboard.service import DEFAULT_PAGE_SIZE, DEFAULT_TOP_PLAYERS, MAX_PAGE_SIZE
from quizarena.progression.schemas import (
    AchievementCheckRequest,
    AchievementCheckResponse,
    GameCompletionResponse,
    GameSummaryRequest,
    LeaderboardResponse,
    ProgressionResponse,
    StatisticsResponse,
    TopPlayersResponse,
    UserAchievementsResponse,
    UserRankResponse,
    XpBreakdownResponse,
    XpGrantRequest,
    XpGrantResponse,
)
from quizarena.progression.xp_calculator import calculate_xp

router = APIRouter(prefix="/api/v1/progression", tags=["Progression"])

WINDOW_PATTERN = "^(daily|weekly|monthly|all_time)$"


# ── Progression ──


@router.get("/me", response_model=ProgressionResponse)
async def get_my_progression(
    user_id: int = Depends(get_current_user_id),
    container: ServiceContainer = Depends(get_container),
):
    """Current level, XP and recent achievements."""
    return await container.progression.get_user_progression(user_id)


@router.post("/xp/calculate", response_model=XpBreakdownResponse)
async def calculate_game_xp(
    body: GameSummaryRequest,
    container: ServiceContainer = Depends(get_container),
):
    """Preview the XP a game would earn. No state changes."""
    return calculate_xp(body.to_summary(), container.rules)


@router.post("/xp", response_model=XpGrantResponse)
async def grant_xp(
    body: XpGrantRequest,
    user_id: int = Depends(get_current_user_id),
    container: ServiceContainer = Depends(get_container),
):
    return await container.progression.add_xp(user_id, body.earned_xp)


@router.post("/games", response_model=GameCompletionResponse)
async def complete_game(
    body: GameSummaryRequest,
    user_id: int = Depends(get_current_user_id),
    container: ServiceContainer = Depends(get_container),
):
    """Record a finished game: stats, XP, achievements, leaderboards, events."""
    return await container.pipeline.complete_game(user_id, body.to_summary())


# ── Achievements and statistics ──


@router.post("/achievements/check", response_model=AchievementCheckResponse)
async def check_achievements(
    body: AchievementCheckRequest,
    user_id: int = Depends(get_current_user_id),
    container: ServiceContainer = Depends(get_container),
):
    unlocked = await container.achievements.check_achievements(user_id, body.to_context())
    return {"new_achievements": unlocked}


@router.get("/achievements", response_model=UserAchievementsResponse)
async def list_my_achievements(
    user_id: int = Depends(get_current_user_id),
    container: ServiceContainer = Depends(get_container),
):
    return await container.achievements.get_user_achievements(user_id)


@router.get("/statistics", response_model=StatisticsResponse)
async def get_my_statistics(
    user_id: int = Depends(get_current_user_id),
    container: ServiceContainer = Depends(get_container),
):
    return await container.statistics.get_user_statistics(user_id)


# ── Leaderboards ──


@router.get("/leaderboard", response_model=LeaderboardResponse)
async def get_leaderboard(
    window_type: str = Query("weekly", pattern=WINDOW_PATTERN),
    category_id: int | None = Query(None, gt=0),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    container: ServiceContainer = Depends(get_container),
):
    """One page of a period leaderboard, global or per category."""
    return await container.leaderboard.get_leaderboard(window_type, category_id, limit, offset)


@router.get("/rank", response_model=UserRankResponse)
async def get_my_rank(
    window_type: str = Query("weekly", pattern=WINDOW_PATTERN),
    category_id: int | None = Query(None, gt=0),
    user_id: int = Depends(get_current_user_id),
    container: ServiceContainer = Depends(get_container),
):
    return await container.leaderboard.get_user_rank(user_id, window_type, category_id)


@router.get("/ranks", response_model=dict[str, UserRankResponse])
async def get_my_ranks(
    user_id: int = Depends(get_current_user_id),
    container: ServiceContainer = Depends(get_container),
):
    """Global rank in every window."""
    return await container.leaderboard.get_user_all_ranks(user_id)


@router.get("/top-players", response_model=TopPlayersResponse)
async def get_top_players(
    limit: int = Query(DEFAULT_TOP_PLAYERS, ge=1, le=MAX_PAGE_SIZE),
    container: ServiceContainer = Depends(get_container),
):
    return {"players": await container.leaderboard.get_top_players(limit)}
