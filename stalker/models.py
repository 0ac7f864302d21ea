"""Record types for rosters, OCR results, week records and the punishment ledger.

The on-disk JSON uses camelCase keys; each record converts with
``from_dict`` / ``to_dict`` so the rest of the code never handles raw dicts.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional


@dataclass
class RosterEntry:
    """A clan member the OCR lines are matched against."""
    user_id: str
    display_name: str

    @classmethod
    def from_dict(cls, data: dict) -> "RosterEntry":
        return cls(user_id=str(data["userId"]), display_name=data["displayName"])

    def to_dict(self) -> dict:
        return {"userId": self.user_id, "displayName": self.display_name}


@dataclass
class RosterSnapshot:
    """Roster frozen at the start of a session."""
    timestamp: str
    guild_id: str
    user_id: str
    members: List[RosterEntry]

    @property
    def count(self) -> int:
        return len(self.members)

    @classmethod
    def from_dict(cls, data: dict) -> "RosterSnapshot":
        return cls(
            timestamp=data.get("timestamp", ""),
            guild_id=str(data.get("guildId", "")),
            user_id=str(data.get("userId", "")),
            members=[RosterEntry.from_dict(m) for m in data.get("members", [])],
        )

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp,
            "guildId": self.guild_id,
            "userId": self.user_id,
            "count": self.count,
            "members": [m.to_dict() for m in self.members],
        }


@dataclass
class RecognizedLine:
    """One line of recognized text."""
    line_number: int
    text: str


@dataclass
class LineAnalysis:
    """Classification of the text after a nick: 'zero', 'negative' or 'unknown'."""
    kind: str
    value: str = ""


@dataclass
class PlayerScore:
    """A nick read from an image together with its score."""
    nick: str
    score: int


@dataclass
class ImageResult:
    """Everything extracted from one uploaded image."""
    image_id: str
    players: List[PlayerScore] = field(default_factory=list)
    error: Optional[str] = None


@dataclass
class ValueCount:
    value: int
    count: int


@dataclass
class Conflict:
    """A nick read with several scores that could not be settled automatically."""
    nick: str
    values: List[ValueCount]


@dataclass
class SessionStatistics:
    unique_nicks: int
    above_zero: int
    zero_count: int
    top30_sum: int
    sorted_scores: List[int] = field(default_factory=list)


@dataclass
class RoundResult:
    """Final per-nick scores of one Phase 2 round."""
    round: int
    results: Dict[str, int]


@dataclass
class Reservation:
    """Exclusive right of the queue head to claim the free slot."""
    user_id: str
    expires_at: float


@dataclass
class QueueEntry:
    user_id: str
    added_at: float


@dataclass
class WeekInfo:
    week_number: int
    year: int


@dataclass
class PlayerRecord:
    """One player's stored score within a week record."""
    user_id: str
    display_name: str
    score: int
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "PlayerRecord":
        return cls(
            user_id=str(data["userId"]),
            display_name=data.get("displayName", ""),
            score=int(data.get("score", 0)),
            created_at=data.get("createdAt"),
            updated_at=data.get("updatedAt"),
        )

    def to_dict(self) -> dict:
        data = {"userId": self.user_id, "displayName": self.display_name, "score": self.score}
        if self.created_at is not None:
            data["createdAt"] = self.created_at
        if self.updated_at is not None:
            data["updatedAt"] = self.updated_at
        return data


@dataclass
class Phase1Record:
    """Week record for Phase 1: one score per player."""
    players: List[PlayerRecord]
    created_by: Optional[str]
    created_at: str
    updated_at: str

    @classmethod
    def from_dict(cls, data: dict) -> "Phase1Record":
        return cls(
            players=[PlayerRecord.from_dict(p) for p in data.get("players", [])],
            created_by=data.get("createdBy"),
            created_at=data.get("createdAt", ""),
            updated_at=data.get("updatedAt", ""),
        )

    def to_dict(self) -> dict:
        return {
            "players": [p.to_dict() for p in self.players],
            "createdBy": self.created_by,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    def find_player(self, user_id: str) -> Optional[PlayerRecord]:
        for player in self.players:
            if player.user_id == user_id:
                return player
        return None


@dataclass
class Phase2Round:
    round: int
    players: List[PlayerRecord]

    @classmethod
    def from_dict(cls, data: dict) -> "Phase2Round":
        return cls(
            round=int(data.get("round", 0)),
            players=[PlayerRecord.from_dict(p) for p in data.get("players", [])],
        )

    def to_dict(self) -> dict:
        return {"round": self.round, "players": [p.to_dict() for p in self.players]}


@dataclass
class Phase2Record:
    """Week record for Phase 2: three rounds plus their per-player sum."""
    rounds: List[Phase2Round]
    summary_players: List[PlayerRecord]
    created_by: Optional[str]
    created_at: str
    updated_at: str

    @classmethod
    def from_dict(cls, data: dict) -> "Phase2Record":
        summary = data.get("summary") or {}
        # Legacy Phase 2 records kept a flat player list instead of rounds.
        summary_players = summary.get("players", data.get("players", []))
        return cls(
            rounds=[Phase2Round.from_dict(r) for r in data.get("rounds", [])],
            summary_players=[PlayerRecord.from_dict(p) for p in summary_players],
            created_by=data.get("createdBy"),
            created_at=data.get("createdAt", ""),
            updated_at=data.get("updatedAt", ""),
        )

    def to_dict(self) -> dict:
        return {
            "rounds": [r.to_dict() for r in self.rounds],
            "summary": {"players": [p.to_dict() for p in self.summary_players]},
            "createdBy": self.created_by,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }


@dataclass
class WeekSummary:
    player_count: int
    top30_sum: int
    created_by: Optional[str]
    created_at: Optional[str]
    updated_at: Optional[str]


@dataclass
class AvailableWeek:
    """A (year, week) that has at least one stored clan record."""
    week_number: int
    year: int
    clans: List[str]
    created_at: Optional[str]

    @property
    def week_key(self) -> str:
        return f"{self.week_number}-{self.year}"


@dataclass
class HistoryEntry:
    points: int
    reason: str
    date: str

    @classmethod
    def from_dict(cls, data: dict) -> "HistoryEntry":
        return cls(points=int(data["points"]), reason=data.get("reason", ""), date=data.get("date", ""))

    def to_dict(self) -> dict:
        return {"points": self.points, "reason": self.reason, "date": self.date}


@dataclass
class UserPunishment:
    """A user's punishment points and the changes that produced them."""
    points: int = 0
    history: List[HistoryEntry] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> "UserPunishment":
        return cls(
            points=max(0, int(data.get("points", 0))),
            history=[HistoryEntry.from_dict(h) for h in data.get("history", [])],
        )

    def to_dict(self) -> dict:
        return {"points": self.points, "history": [h.to_dict() for h in self.history]}


@dataclass
class DecayMarker:
    date: str
    cleaned_users: int

    @classmethod
    def from_dict(cls, data: dict) -> "DecayMarker":
        return cls(date=data.get("date", ""), cleaned_users=int(data.get("cleanedUsers", 0)))

    def to_dict(self) -> dict:
        return {"date": self.date, "cleanedUsers": self.cleaned_users}


@dataclass
class MigrationResult:
    success: bool
    phase1_count: int = 0
    phase2_count: int = 0
    errors: int = 0
    error: Optional[str] = None


@dataclass
class RankingEntry:
    user_id: str
    display_name: str
    points: int
