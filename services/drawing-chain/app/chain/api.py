import logging
import threading
import uuid
from typing import Dict, List, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field
from starlette.concurrency import run_in_threadpool

from ..utils import decode_image
from .errors import InputError, MatchError
from .ingestion.models import PlayerSnapshot, PlayerStanding, TracePoint
from .match import MatchSession, RoundOutcome

logger = logging.getLogger("chain.api")

router = APIRouter(prefix="/api/v1/chain", tags=["chain"])

# Matches live for the lifetime of the process
_matches: Dict[str, MatchSession] = {}
_matches_lock = threading.Lock()


class PlayerIn(BaseModel):
    id: str
    name: str


class CreateMatchRequest(BaseModel):
    players: List[PlayerIn]
    theme: Optional[str] = None
    max_rounds: Optional[int] = Field(default=None, gt=0)


class ContributionRequest(BaseModel):
    player_id: str
    events: List[TracePoint] = []
    before_image: str  # Base64 PNG or data URL
    after_image: str


def _get_match(match_id: str) -> MatchSession:
    with _matches_lock:
        session = _matches.get(match_id)
    if session is None:
        raise HTTPException(status_code=404, detail=f"Unknown match {match_id}")
    return session


def _get_player_match(match_id: str, player_id: str) -> MatchSession:
    session = _get_match(match_id)
    if player_id not in {p.id for p in session.players}:
        raise HTTPException(status_code=404, detail=f"Unknown player {player_id}")
    return session


@router.post("/matches", status_code=201)
async def create_match(request: CreateMatchRequest):
    """
    Starts a match for the given players. Without a theme one is drawn from the pool.
    """
    try:
        session = MatchSession(
            [(p.id, p.name) for p in request.players],
            theme=request.theme,
            max_rounds=request.max_rounds,
        )
    except InputError as e:
        raise HTTPException(status_code=422, detail=str(e))
    match_id = uuid.uuid4().hex
    with _matches_lock:
        _matches[match_id] = session
    logger.info("Match %s created with %d players, theme=%r", match_id, len(request.players), session.theme)
    return {"match_id": match_id, "state": session.state.model_dump(mode="json")}


@router.post("/matches/{match_id}/contributions", status_code=201)
async def submit_contribution(match_id: str, request: ContributionRequest):
    """
    Scores a player's drawing for the current round and returns the scored contribution.
    """
    session = _get_player_match(match_id, request.player_id)
    try:
        before = decode_image(request.before_image)
        after = decode_image(request.after_image)
        # Scoring is CPU bound; keep it off the event loop
        contribution = await run_in_threadpool(
            session.submit, request.player_id, request.events, before, after
        )
    except InputError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except MatchError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except Exception:
        logger.exception("Scoring failed for match %s, player %s", match_id, request.player_id)
        raise
    body = contribution.model_dump(mode="json")
    body["round_complete"] = session.round_complete(contribution.round_number)
    return body


@router.post("/matches/{match_id}/rounds/end", response_model=RoundOutcome)
async def end_round(match_id: str, force: bool = False):
    """
    Closes the current round. Answers 409 while players are missing unless forced.
    """
    session = _get_match(match_id)
    try:
        return session.end_round(force=force)
    except MatchError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.get("/matches/{match_id}/players/{player_id}", response_model=PlayerSnapshot)
async def player_score(match_id: str, player_id: str):
    """Live standing of one player."""
    session = _get_player_match(match_id, player_id)
    # Waits for the player's submission in flight, if any
    return await run_in_threadpool(session.snapshot, player_id)


@router.get("/matches/{match_id}/standings", response_model=List[PlayerStanding])
async def standings(match_id: str):
    return _get_match(match_id).standings()


@router.get("/matches/{match_id}/results")
async def results(match_id: str):
    """
    Final leaderboard and titles, once the last round has ended. Safe to
    call repeatedly.
    """
    session = _get_match(match_id)
    try:
        result = await run_in_threadpool(session.final_results)
    except MatchError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return result.model_dump(mode="json")
