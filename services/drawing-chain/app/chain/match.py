"""
In-memory match session for a drawing chain game.

Holds the round/theme state and the players' aggregates, and makes sure
that a player's contributions are folded into their aggregate one at a
time and in submission order. Contributions of different players are
scored concurrently.
"""
import logging
import random
import threading
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from pydantic import BaseModel

from ..config import ScoringSettings, get_settings
from .errors import InputError, MatchError
from .ingestion.models import (
    Clock,
    Contribution,
    IdFactory,
    MatchResult,
    MatchState,
    Player,
    PlayerSnapshot,
    PlayerStanding,
    default_clock,
    default_id_factory,
    new_contribution,
)
from .judgment.engine import finalize_match, player_snapshot, rank_players, score_contribution
from .judgment.rules import ThemeRuleRegistry

logger = logging.getLogger("chain.match")

THEME_POOL = [
    "Un chat dans l'espace",
    "Un robot qui danse",
    "Une licorne arc-en-ciel",
    "Un pirate alien",
    "Un dragon endormi",
    "Une maison volante",
    "Un arbre magique",
    "Un poisson astronaute",
    "Une voiture du futur",
    "Un monstre gentil",
]

ThemePicker = Callable[[Sequence[str]], str]


class RoundOutcome(BaseModel):
    completed_round: int
    next_round: Optional[int] = None
    theme: Optional[str] = None
    finished: bool = False


class MatchSession:
    def __init__(
        self,
        players: Iterable[Tuple[str, str]],
        theme: Optional[str] = None,
        max_rounds: Optional[int] = None,
        id_factory: IdFactory = default_id_factory,
        clock: Clock = default_clock,
        theme_picker: ThemePicker = random.choice,
        registry: Optional[ThemeRuleRegistry] = None,
        settings: Optional[ScoringSettings] = None,
    ):
        self.settings = settings or get_settings()
        self._id_factory = id_factory
        self._clock = clock
        self._theme_picker = theme_picker
        self._registry = registry

        self._players: Dict[str, Player] = {}
        for player_id, name in players:
            if player_id in self._players:
                raise InputError(f"duplicate player id {player_id!r}")
            self._players[player_id] = Player(id=player_id, name=name)
        if not self._players:
            raise InputError("a match needs at least one player")

        rounds = max_rounds if max_rounds is not None else self.settings.max_rounds
        if rounds < 1:
            raise InputError("max_rounds must be at least 1")

        self.theme = theme if theme is not None else self._theme_picker(THEME_POOL)
        self.current_round = 1
        self.max_rounds = rounds
        self.finished = False
        self._log: List[Contribution] = []

        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self._in_flight = 0
        self._player_locks = {pid: threading.Lock() for pid in self._players}

    # --- Queries ---

    @property
    def players(self) -> List[Player]:
        """Players in registration order."""
        return list(self._players.values())

    @property
    def contributions(self) -> List[Contribution]:
        with self._lock:
            return list(self._log)

    @property
    def state(self) -> MatchState:
        with self._lock:
            return MatchState(
                theme=self.theme,
                current_round=self.current_round,
                max_rounds=self.max_rounds,
                players=dict(self._players),
                contributions=list(self._log),
                finished=self.finished,
            )

    def get_player(self, player_id: str) -> Player:
        try:
            return self._players[player_id]
        except KeyError:
            raise MatchError(f"unknown player {player_id!r}") from None

    def snapshot(self, player_id: str) -> PlayerSnapshot:
        player = self.get_player(player_id)
        with self._player_locks[player_id]:
            return player_snapshot(player)

    def standings(self) -> List[PlayerStanding]:
        return [
            PlayerStanding(**player_snapshot(p).model_dump(), rank=rank, titles=list(p.titles))
            for rank, p in enumerate(rank_players(self.players), start=1)
        ]

    def _submitted(self, round_number: int) -> List[str]:
        # caller holds self._lock
        return [c.player_id for c in self._log if c.round_number == round_number]

    def _round_complete(self, round_number: int) -> bool:
        return set(self._submitted(round_number)) >= set(self._players)

    def submitted(self, round_number: Optional[int] = None) -> List[str]:
        with self._lock:
            if round_number is None:
                round_number = self.current_round
            return self._submitted(round_number)

    def round_complete(self, round_number: Optional[int] = None) -> bool:
        """True once every player has a scored contribution for the round."""
        with self._lock:
            if round_number is None:
                round_number = self.current_round
            return self._round_complete(round_number)

    # --- Commands ---

    def submit(self, player_id: str, events: Iterable, before_image, after_image) -> Contribution:
        """
        Creates and scores a contribution for the current round.
        A player has at most one contribution in flight; a second caller for
        the same player waits for the first to finish.

        The creativity history is every logged contribution of earlier
        rounds, from all players. Sessions do not track which drawing a
        contribution extends, so the whole match stands in for its chain.
        """
        player = self.get_player(player_id)
        with self._player_locks[player_id]:
            with self._lock:
                if self.finished:
                    raise MatchError("the match is over")
                round_number = self.current_round
                if any(c.player_id == player_id and c.round_number == round_number for c in self._log):
                    raise MatchError(f"player {player_id!r} already submitted for round {round_number}")
                theme = self.theme
                history = [c for c in self._log if c.round_number < round_number]
                self._in_flight += 1
            contribution = None
            try:
                contribution = new_contribution(
                    player_id, round_number, theme, events, before_image, after_image,
                    id_factory=self._id_factory, clock=self._clock,
                )
                score_contribution(
                    contribution, player=player, history=history,
                    registry=self._registry, settings=self.settings,
                )
            finally:
                with self._lock:
                    if contribution is not None and contribution.scored:
                        self._log.append(contribution)
                    self._in_flight -= 1
                    self._idle.notify_all()
        return contribution

    def end_round(self, force: bool = False) -> RoundOutcome:
        """
        Closes the current round once every player has submitted. ``force``
        closes it regardless, e.g. when a player dropped out.
        """
        with self._lock:
            if self.finished:
                raise MatchError("the match is over")
            completed = self.current_round
            if not force and not self._round_complete(completed):
                missing = [pid for pid in self._players if pid not in self._submitted(completed)]
                raise MatchError(f"round {completed} is still waiting for {', '.join(missing)}")
            if completed >= self.max_rounds:
                self.finished = True
                logger.info("Round %d ended, match finished", completed)
                return RoundOutcome(completed_round=completed, finished=True)
            self.current_round = completed + 1
            self.theme = self._theme_picker(THEME_POOL)
            logger.info("Round %d ended, round %d theme: %s", completed, self.current_round, self.theme)
            return RoundOutcome(completed_round=completed, next_round=self.current_round, theme=self.theme)

    def final_results(self, timeout: Optional[float] = None) -> MatchResult:
        """
        Waits until no contribution is being scored, then ranks the players
        and hands out titles. Only available once the last round has ended.
        Titles are replaced, not appended, so calling this again yields the
        same state.
        """
        with self._idle:
            if not self.finished:
                raise MatchError(f"the match is still in round {self.current_round} of {self.max_rounds}")
            if not self._idle.wait_for(lambda: self._in_flight == 0, timeout=timeout):
                raise MatchError("timed out waiting for in-flight contributions")
            players = list(self._players.values())
            log = list(self._log)
            result = finalize_match(players, log)
            for p in players:
                p.titles = [t for t, holder in result.title_assignments.items() if holder == p.id]
        return result
