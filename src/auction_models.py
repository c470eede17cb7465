# --- auction_models.py ---
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType


class PlayerRole(str, Enum):
    BATSMAN = "Batsman"
    BOWLER = "Bowler"
    ALL_ROUNDER = "All-rounder"
    WICKET_KEEPER = "Wicket-keeper"

    @classmethod
    def from_text(cls, text):
        """Accepts the role as written in setup files ('all rounder', 'WK', ...)."""
        cleaned = (text or "").strip().lower().replace("_", "-").replace(" ", "-")
        aliases = {
            "batsman": cls.BATSMAN, "batter": cls.BATSMAN, "bat": cls.BATSMAN,
            "bowler": cls.BOWLER, "bowl": cls.BOWLER,
            "all-rounder": cls.ALL_ROUNDER, "allrounder": cls.ALL_ROUNDER, "all": cls.ALL_ROUNDER,
            "wicket-keeper": cls.WICKET_KEEPER, "wicketkeeper": cls.WICKET_KEEPER, "wk": cls.WICKET_KEEPER,
        }
        if cleaned not in aliases:
            raise ValueError(f"Unknown player role '{text}'")
        return aliases[cleaned]


STAT_KEYS = ("matches", "runs", "wickets", "strike_rate", "economy", "batting_avg", "bowling_avg")


@dataclass(frozen=True)
class Player:
    id: str
    name: str
    role: PlayerRole
    country: str
    base_price: int
    set_number: int = 1
    set_name: str = ""
    age: int | None = None
    previous_team: str = ""
    photo_url: str = ""
    stats: MappingProxyType = field(default_factory=lambda: MappingProxyType({}), compare=False)

    def __post_init__(self):
        if not self.id or not self.name:
            raise ValueError("Player id and name are required.")
        if self.base_price < 0:
            raise ValueError(f"Player '{self.name}' has a negative base price ({self.base_price}).")
        # Freeze whatever mapping was passed in so display stats stay read-only.
        if not isinstance(self.stats, MappingProxyType):
            object.__setattr__(self, "stats", MappingProxyType(dict(self.stats)))

    @property
    def display_set_name(self):
        return self.set_name or f"Set {self.set_number}"

    def to_dict(self):
        return {
            "id": self.id, "name": self.name, "role": self.role.value, "country": self.country,
            "base_price": self.base_price, "set": self.set_number, "set_name": self.display_set_name,
            "age": self.age, "previous_team": self.previous_team, "photo_url": self.photo_url,
            "stats": dict(self.stats),
        }


@dataclass
class Team:
    id: str
    name: str
    budget: int
    primary_color: str = "#1f3a93"
    logo: str = ""
    players: list = field(default_factory=list)
    initial_budget: int = field(default=None)

    def __post_init__(self):
        if not self.id or not self.name:
            raise ValueError("Team id and name are required.")
        if self.budget < 0:
            raise ValueError(f"Team '{self.name}' starts with a negative budget ({self.budget}).")
        if self.initial_budget is None:
            self.initial_budget = self.budget

    @property
    def spent(self):
        return self.initial_budget - self.budget

    def to_dict(self):
        return {
            "id": self.id, "name": self.name, "budget": self.budget,
            "initial_budget": self.initial_budget, "primary_color": self.primary_color,
            "logo": self.logo, "players": [p.id for p in self.players],
        }


@dataclass(frozen=True)
class BidStep:
    """Bid state as it was before a newer bid replaced it."""
    amount: int
    team_id: str | None


@dataclass(frozen=True)
class SaleRecord:
    player: Player
    team_id: str
    price: int

    def to_dict(self):
        return {"player_id": self.player.id, "player_name": self.player.name,
                "team_id": self.team_id, "price": self.price}
