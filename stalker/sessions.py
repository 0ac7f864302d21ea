"""Ingestion sessions: cross-validating scores over many screenshots.

A session belongs to one user in one guild and walks through
``awaiting_images → confirming_complete → resolving_conflicts →
final_confirmation``. Phase 2 sessions repeat that loop for three rounds.
``SessionManager`` owns the timers and scratch files of live sessions.
"""

import asyncio
import enum
import logging
import time
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from .alignment import extract_players_with_scores
from .config import PHASE2_ROUNDS, PHASE_TEMP_DIR, SESSION_TIMEOUT_SECONDS
from .exceptions import RecognitionError
from .models import (
    Conflict, ImageResult, Phase2Round, PlayerRecord, RoundResult,
    SessionStatistics, ValueCount, WeekInfo,
)
from .queue import QueueCoordinator
from .recognizer import TextRecognizer
from .roster import delete_snapshot, fetch_members, resolve_roster, save_snapshot
from .storage import ResultsStore, top30_sum
from .timeutils import week_info


logger = logging.getLogger(__name__)


class Stage:
    AWAITING_IMAGES = "awaiting_images"
    CONFIRMING_COMPLETE = "confirming_complete"
    RESOLVING_CONFLICTS = "resolving_conflicts"
    FINAL_CONFIRMATION = "final_confirmation"


class ProgressStatus(enum.Enum):
    OK = "ok"
    EXPIRED = "expired"


@dataclass
class ProgressUpdate:
    current_image: int
    total_images: int
    stage: str
    action: str

    @property
    def percent(self) -> int:
        return round(self.current_image / self.total_images * 100) if self.total_images else 0


@dataclass
class ProgressCounts:
    """Live statistics shown while images are processed."""
    unique_nicks: int
    confirmed: int
    unconfirmed: int
    conflicts: int
    with_zero: int


ProgressCallback = Callable[["Session", ProgressUpdate], Awaitable[ProgressStatus]]


def calculate_statistics(results: Dict[str, int]) -> SessionStatistics:
    """Counts and the top-30 sum of a nick → score mapping."""
    sorted_scores = sorted((int(score) for score in results.values()), reverse=True)
    return SessionStatistics(
        unique_nicks=len(results),
        above_zero=sum(1 for score in sorted_scores if score > 0),
        zero_count=sum(1 for score in sorted_scores if score == 0),
        top30_sum=top30_sum(sorted_scores),
        sorted_scores=sorted_scores,
    )


@dataclass
class Session:
    """One user's ingestion workflow."""
    session_id: str
    user_id: str
    guild_id: str
    channel_id: str
    phase: int = 1
    clan: Optional[str] = None
    current_round: int = 1
    rounds_data: List[RoundResult] = field(default_factory=list)
    processed_images: List[ImageResult] = field(default_factory=list)
    aggregated_results: Dict[str, List[int]] = field(default_factory=dict)
    conflicts: List[Conflict] = field(default_factory=list)
    resolved_conflicts: Dict[str, int] = field(default_factory=dict)
    stage: str = Stage.AWAITING_IMAGES
    created_at: float = field(default_factory=time.time)
    timeout_handle: Optional[asyncio.TimerHandle] = None
    downloaded_files: List[Path] = field(default_factory=list)
    public_interaction: Optional[object] = None
    roster_snapshot_path: Optional[Path] = None

    @property
    def prefix(self) -> str:
        """Custom id prefix of this session's buttons."""
        return f"phase{self.phase}"

    def add_image(self, result: ImageResult):
        self.processed_images.append(result)
        self.aggregate()

    def aggregate(self):
        """Rebuild nick → scores from every image that was read successfully."""
        self.aggregated_results = {}
        for image in self.processed_images:
            if image.error:
                continue
            for player in image.players:
                self.aggregated_results.setdefault(player.nick, []).append(player.score)
        logger.info(f"📊 Aggregated results for {len(self.aggregated_results)} unique nicks")

    def identify_conflicts(self) -> List[Conflict]:
        """Find nicks read with different scores.

        When exactly one value was read at least twice it is accepted
        without asking; everything else needs a decision from the user.
        """
        self.conflicts = []
        for nick, scores in self.aggregated_results.items():
            if len(set(scores)) <= 1:
                continue

            # most_common keeps first-seen order among equal counts
            values = [ValueCount(value=value, count=count) for value, count in Counter(scores).most_common()]
            repeated = [v for v in values if v.count >= 2]

            if len(repeated) == 1:
                logger.info(f"✅ Auto-accept for \"{nick}\": {repeated[0].value} ({repeated[0].count}x)")
                self.resolved_conflicts[nick] = repeated[0].value
            else:
                self.conflicts.append(Conflict(nick=nick, values=values))

        logger.info(f"❓ Identified {len(self.conflicts)} conflicts requiring choice")
        return self.conflicts

    def resolve_conflict(self, nick: str, value: int):
        self.resolved_conflicts[nick] = value
        logger.info(f"✅ Resolved conflict for \"{nick}\": {value}")

    def next_unresolved_conflict(self) -> Optional[Conflict]:
        for conflict in self.conflicts:
            if conflict.nick not in self.resolved_conflicts:
                return conflict
        return None

    def conflict_position(self, conflict: Conflict) -> int:
        """1-based index of a conflict, for 'Conflict 2/5' style headers."""
        return self.conflicts.index(conflict) + 1

    def final_results(self) -> Dict[str, int]:
        """Single agreed score per nick; nicks with unresolved conflicts are dropped."""
        results = {}
        for nick, scores in self.aggregated_results.items():
            if len(set(scores)) == 1:
                results[nick] = scores[0]
            elif nick in self.resolved_conflicts:
                results[nick] = self.resolved_conflicts[nick]
            else:
                logger.warning(f"⚠️ Unresolved conflict for \"{nick}\", skipping")
        return results

    def statistics(self) -> SessionStatistics:
        return calculate_statistics(self.final_results())

    def progress_counts(self) -> ProgressCounts:
        scores = list(self.aggregated_results.values())
        confirmed = sum(1 for s in scores if len(s) >= 2 and len(set(s)) == 1)
        return ProgressCounts(
            unique_nicks=len(scores),
            confirmed=confirmed,
            unconfirmed=len(scores) - confirmed,
            conflicts=sum(1 for s in scores if len(set(s)) > 1),
            with_zero=sum(1 for s in scores if 0 in s),
        )

    def close_round(self) -> RoundResult:
        """Store the current round's final results in ``rounds_data``."""
        round_result = RoundResult(round=self.current_round, results=self.final_results())
        self.rounds_data.append(round_result)
        logger.info(f"✅ Finished round {self.current_round}/{PHASE2_ROUNDS} "
                    f"with {len(round_result.results)} players")
        return round_result

    def start_next_round(self):
        """Close the current Phase 2 round and wait for the next round's images."""
        self.close_round()
        self.processed_images = []
        self.aggregated_results = {}
        self.conflicts = []
        self.resolved_conflicts = {}
        self.downloaded_files = []
        self.current_round += 1
        self.stage = Stage.AWAITING_IMAGES
        logger.info(f"🔄 Starting round {self.current_round}/{PHASE2_ROUNDS}")

    def is_last_round(self) -> bool:
        return self.current_round >= PHASE2_ROUNDS

    def sum_phase2_results(self) -> Dict[str, int]:
        """Per-nick sum over all closed rounds."""
        summed: Dict[str, int] = {}
        for round_result in self.rounds_data:
            for nick, score in round_result.results.items():
                summed[nick] = summed.get(nick, 0) + int(score)
        logger.info(f"✅ Summed {len(self.rounds_data)} rounds: {len(summed)} players")
        return summed

    def total_zero_count(self) -> int:
        """Zero scores across all closed rounds."""
        return sum(
            1 for round_result in self.rounds_data
            for score in round_result.results.values() if score == 0
        )

    def clear(self):
        self.processed_images = []
        self.aggregated_results = {}
        self.conflicts = []
        self.resolved_conflicts = {}
        self.rounds_data = []
        self.downloaded_files = []
        self.public_interaction = None


def match_member(members, nick: str):
    """Guild member whose display name or username equals the nick, ignoring case."""
    wanted = nick.lower()
    for member in members:
        if member.display_name.lower() == wanted or member.name.lower() == wanted:
            return member
    return None


def build_phase2_payload(session: Session, members) -> Tuple[List[Phase2Round], List[PlayerRecord]]:
    """Round records and summed player records, keeping only nicks that match a member."""
    rounds = []
    for round_result in session.rounds_data:
        players = []
        for nick, score in round_result.results.items():
            member = match_member(members, nick)
            if member is not None:
                players.append(PlayerRecord(user_id=str(member.id), display_name=member.display_name, score=score))
        rounds.append(Phase2Round(round=round_result.round, players=players))

    summary = []
    for nick, total in session.sum_phase2_results().items():
        member = match_member(members, nick)
        if member is not None:
            summary.append(PlayerRecord(user_id=str(member.id), display_name=member.display_name, score=total))
        else:
            logger.warning(f"⚠️ Discord member not found for nick: {nick}")

    return rounds, summary


class SessionManager:

    def __init__(self, queue: QueueCoordinator, recognizer: TextRecognizer,
                 temp_dir: Path = PHASE_TEMP_DIR, timeout_seconds: float = SESSION_TIMEOUT_SECONDS,
                 on_expired: Optional[Callable[[Session], Awaitable[None]]] = None,
                 clock: Callable[[], float] = time.time):
        self.queue = queue
        self.recognizer = recognizer
        self.temp_dir = Path(temp_dir)
        self.timeout_seconds = timeout_seconds
        self.on_expired = on_expired
        self.clock = clock
        self.sessions: Dict[str, Session] = {}
        self._tasks = set()

    def create_session(self, user_id: str, guild_id: str, channel_id: str,
                       phase: int = 1, clan: Optional[str] = None) -> Session:
        session_id = f"{user_id}_{int(self.clock() * 1000)}"
        session = Session(
            session_id=session_id,
            user_id=str(user_id),
            guild_id=str(guild_id),
            channel_id=str(channel_id),
            phase=phase,
            clan=clan,
            created_at=self.clock(),
        )
        self.sessions[session_id] = session
        self.refresh_timeout(session_id)
        logger.info(f"📝 Created Phase {phase} session: {session_id}")
        return session

    def get_session(self, session_id: str) -> Optional[Session]:
        return self.sessions.get(session_id)

    def get_session_by_user(self, user_id: str) -> Optional[Session]:
        for session in self.sessions.values():
            if session.user_id == str(user_id):
                return session
        return None

    def refresh_timeout(self, session_id: str):
        """Restart the inactivity timer."""
        session = self.sessions.get(session_id)
        if session is None:
            return
        if session.timeout_handle is not None:
            session.timeout_handle.cancel()
            session.timeout_handle = None
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        session.timeout_handle = loop.call_later(self.timeout_seconds, self._spawn_expiry, session_id)

    def _spawn_expiry(self, session_id: str):
        task = asyncio.ensure_future(self.expire_session(session_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def expire_session(self, session_id: str):
        """Inactivity timeout: tell the channel, then clean up."""
        session = self.sessions.get(session_id)
        if session is None:
            return
        logger.warning(f"⏰ Session {session_id} expired after inactivity")
        if self.on_expired is not None:
            await self.on_expired(session)
        await self.cleanup_session(session_id)

    def _session_files(self, session_id: str) -> List[Path]:
        if not self.temp_dir.is_dir():
            return []
        return [p for p in self.temp_dir.iterdir() if p.name.startswith(session_id)]

    def _delete_session_files(self, session_id: str):
        for path in self._session_files(session_id):
            try:
                path.unlink()
                logger.info(f"🗑️ Deleted file: {path.name}")
            except FileNotFoundError:
                continue

    async def cleanup_session(self, session_id: str):
        """Delete scratch files and the snapshot, free the guild slot, forget the session."""
        # Forget the session before the first await; a concurrent cleanup then finds nothing.
        session = self.sessions.pop(session_id, None)
        if session is None:
            return

        logger.info(f"🧹 Starting session cleanup: {session_id}")
        if session.timeout_handle is not None:
            session.timeout_handle.cancel()
            session.timeout_handle = None

        await asyncio.to_thread(self._delete_session_files, session_id)
        if session.roster_snapshot_path is not None:
            await asyncio.to_thread(delete_snapshot, session.roster_snapshot_path)
            session.roster_snapshot_path = None

        session.clear()
        await self.queue.release(session.guild_id, session.user_id)
        logger.info(f"🗑️ Session cleaned: {session_id}")

    async def download_attachment(self, session: Session, attachment, index: int) -> Path:
        """Save an uploaded image as temp/phase1/{sessionId}_{i}_{epochMs}.png."""
        self.temp_dir.mkdir(parents=True, exist_ok=True)
        path = self.temp_dir / f"{session.session_id}_{index}_{int(self.clock() * 1000)}.png"
        await attachment.save(path)
        session.downloaded_files.append(path)
        logger.info(f"💾 Saved image: {path.name}")
        return path

    def snapshot_path(self, session: Session) -> Path:
        return self.temp_dir / f"role_nicks_snapshot_{session.session_id}.json"

    async def process_images(self, session: Session, files: List[Path], guild, requester,
                             target_roles: Dict[str, str],
                             progress: Optional[ProgressCallback] = None) -> Optional[List[ImageResult]]:
        """Recognize and align each file, adding the results to the session.

        Returns None when the progress display reports the interaction
        expired; the session has been cleaned up by then.
        """
        logger.info(f"🔄 Processing {len(files)} images for session {session.session_id}")

        if session.roster_snapshot_path is None:
            path = self.snapshot_path(session)
            if await save_snapshot(guild, requester, path, target_roles, session.clan):
                session.roster_snapshot_path = path
            else:
                logger.warning("⚠️ Failed to create roster snapshot - live fetching will be used")

        roster = await resolve_roster(guild, requester, target_roles, session.roster_snapshot_path, session.clan)

        async def report(index: int, stage: str, action: str) -> bool:
            if progress is None:
                return True
            status = await progress(session, ProgressUpdate(index + 1, len(files), stage, action))
            return status is not ProgressStatus.EXPIRED

        results = []
        for index, path in enumerate(files):
            if not await report(index, "loading", "Loading image"):
                await self.cleanup_session(session.session_id)
                return None
            logger.info(f"📷 Processing image {index + 1}/{len(files)}: {Path(path).name}")

            if not await report(index, "ocr", "Text recognition (OCR)"):
                await self.cleanup_session(session.session_id)
                return None
            try:
                text = await self.recognizer.recognize_file(path)
            except RecognitionError as e:
                logger.error(f"❌ Error processing image {index + 1}: {e}")
                result = ImageResult(image_id=Path(path).name, error=str(e))
                results.append(result)
                session.add_image(result)
                continue

            if not await report(index, "extracting", "Extracting player scores"):
                await self.cleanup_session(session.session_id)
                return None
            players = extract_players_with_scores(text, roster)
            result = ImageResult(image_id=Path(path).name, players=players)
            results.append(result)
            session.add_image(result)

            if not await report(index, "aggregating", "Aggregating results"):
                await self.cleanup_session(session.session_id)
                return None
            logger.info(f"✅ Found {len(players)} players on image {index + 1}")

        return results

    async def save_phase1(self, session: Session, guild, store: ResultsStore, created_by: str,
                          week: Optional[WeekInfo] = None) -> int:
        """Replace the week's Phase 1 record with this session's results. Returns players saved."""
        week = week or week_info()
        final = session.final_results()
        logger.info(f"💾 Saving results for week {week.week_number}/{week.year}, clan: {session.clan}")

        await store.delete_for_week(1, session.guild_id, week.week_number, week.year, session.clan)
        members = await fetch_members(guild)

        saved = 0
        for nick, score in final.items():
            member = match_member(members, nick)
            if member is None:
                logger.warning(f"⚠️ Discord member not found for nick: {nick}")
                continue
            await store.save_phase1_player(
                session.guild_id, str(member.id), member.display_name, int(score),
                week.week_number, week.year, session.clan,
                created_by if saved == 0 else None,
            )
            saved += 1

        logger.info(f"✅ Saved {saved}/{len(final)} results")
        return saved

    async def save_phase2(self, session: Session, guild, store: ResultsStore, created_by: str,
                          week: Optional[WeekInfo] = None) -> int:
        """Write the three rounds and their sum as this week's Phase 2 record."""
        week = week or week_info()
        members = await fetch_members(guild)
        rounds, summary = build_phase2_payload(session, members)
        await store.save_phase2_results(
            session.guild_id, week.week_number, week.year, session.clan, rounds, summary, created_by
        )
        return len(summary)
