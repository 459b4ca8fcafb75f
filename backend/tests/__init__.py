# Force SQLModel table registration at test discovery time
# This ensures all models are registered before any test database creation
from app.models.bracket import Bracket  # noqa: F401
from app.models.category import Category  # noqa: F401
from app.models.match import Match  # noqa: F401
from app.models.match_event import MatchEvent  # noqa: F401
from app.models.tournament import Tournament  # noqa: F401
