from app.models.bracket import Bracket
from app.models.category import BracketKind, Category, SeedingMethod
from app.models.match import BracketSide, Match, MatchStatus
from app.models.match_event import MatchEvent
from app.models.tournament import Tournament, TournamentStatus

__all__ = [
    "Tournament",
    "TournamentStatus",
    "Category",
    "BracketKind",
    "SeedingMethod",
    "Bracket",
    "Match",
    "MatchStatus",
    "BracketSide",
    "MatchEvent",
]
