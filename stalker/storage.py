"""File-backed weekly results store.

Each (guild, phase, year, week, clan) has its own JSON file:
``phases/guild_{g}/phase{1|2}/{year}/week-{w}_{clan}.json`` under the data
directory. Older versions kept everything in one monolithic file per phase;
``migrate_to_split_files`` converts those.
"""

import asyncio
import json
import logging
import os
import re
import shutil
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

from .config import DATA_DIR
from .exceptions import StorageError
from .models import (
    AvailableWeek, MigrationResult, Phase1Record, Phase2Record, Phase2Round,
    PlayerRecord, WeekSummary,
)
from .timeutils import now_iso


logger = logging.getLogger(__name__)

WEEK_FILE_PATTERN = re.compile(r"^week-(\d+)_(.+)\.json$")

WeekRecord = Union[Phase1Record, Phase2Record]


def read_json(path: Path) -> Optional[dict]:
    """Load a JSON file, or None if it does not exist."""
    try:
        with Path(path).open("r", encoding="utf-8") as f:
            return json.load(f)
    except FileNotFoundError:
        return None


def write_json(path: Path, data) -> None:
    """Write pretty-printed JSON in one replace so readers never see half a file."""
    path = Path(path)
    tmp_path = path.with_name(path.name + ".tmp")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with tmp_path.open("w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
        os.replace(tmp_path, path)
    except OSError as e:
        raise StorageError(str(path), str(e)) from e


def top30_sum(scores: List[int]) -> int:
    """Sum of the 30 largest scores."""
    return sum(sorted(scores, reverse=True)[:30])


class ResultsStore:
    """Per-week per-clan result files for both phases."""

    def __init__(self, data_dir: Path = DATA_DIR):
        self.data_dir = Path(data_dir)
        self.phases_dir = self.data_dir / "phases"

    def phase_dir(self, phase: int, guild_id: str) -> Path:
        return self.phases_dir / f"guild_{guild_id}" / f"phase{phase}"

    def week_path(self, phase: int, guild_id: str, week_number: int, year: int, clan: str) -> Path:
        """Path of one week record, e.g. phases/guild_1/phase1/2025/week-40_main.json."""
        return self.phase_dir(phase, guild_id) / str(year) / f"week-{week_number}_{clan}.json"

    def legacy_path(self, phase: int) -> Path:
        return self.data_dir / f"phase{phase}_results.json"

    async def _load_record(self, phase: int, path: Path) -> Optional[WeekRecord]:
        try:
            data = await asyncio.to_thread(read_json, path)
        except (OSError, ValueError) as e:
            logger.warning(f"⚠️ Unreadable week file {path}: {e}")
            return None
        if data is None:
            return None
        return Phase1Record.from_dict(data) if phase == 1 else Phase2Record.from_dict(data)

    async def check_exists(self, phase: int, guild_id: str, week_number: int, year: int,
                           clan: str) -> Tuple[bool, Optional[WeekRecord]]:
        """Whether a record exists for this week and clan, with its content."""
        record = await self._load_record(phase, self.week_path(phase, guild_id, week_number, year, clan))
        return record is not None, record

    async def delete_for_week(self, phase: int, guild_id: str, week_number: int, year: int, clan: str) -> bool:
        """Remove a week record. Returns True if a file was removed."""
        path = self.week_path(phase, guild_id, week_number, year, clan)
        try:
            await asyncio.to_thread(path.unlink)
        except FileNotFoundError:
            return False
        logger.info(f"🗑️ Deleted Phase {phase} data for week {week_number}/{year}, clan: {clan}")
        return True

    async def save_phase1_player(self, guild_id: str, user_id: str, display_name: str, score: int,
                                 week_number: int, year: int, clan: str,
                                 created_by: Optional[str] = None) -> Phase1Record:
        """Insert or update one player's Phase 1 score.

        ``created_by`` is only recorded when this write creates the file.
        """
        path = self.week_path(1, guild_id, week_number, year, clan)
        timestamp = now_iso()

        record = await self._load_record(1, path)
        if record is None:
            record = Phase1Record(players=[], created_by=created_by, created_at=timestamp, updated_at=timestamp)

        existing = record.find_player(user_id)
        if existing is not None:
            index = record.players.index(existing)
            record.players[index] = PlayerRecord(
                user_id=user_id, display_name=display_name, score=score, updated_at=timestamp
            )
        else:
            record.players.append(PlayerRecord(
                user_id=user_id, display_name=display_name, score=score, created_at=timestamp
            ))

        record.updated_at = timestamp
        await asyncio.to_thread(write_json, path, record.to_dict())
        logger.info(f"💾 Saved: {display_name} → {score} points (clan: {clan})")
        return record

    async def save_phase2_results(self, guild_id: str, week_number: int, year: int, clan: str,
                                  rounds: List[Phase2Round], summary_players: List[PlayerRecord],
                                  created_by: Optional[str]) -> Phase2Record:
        """Write the complete Phase 2 record (three rounds plus their sum) at once."""
        path = self.week_path(2, guild_id, week_number, year, clan)
        if path.exists():
            logger.warning(f"⚠️ Overwriting Phase 2 data for week {week_number}/{year}, clan: {clan}")

        timestamp = now_iso()
        record = Phase2Record(
            rounds=rounds,
            summary_players=summary_players,
            created_by=created_by,
            created_at=timestamp,
            updated_at=timestamp,
        )
        await asyncio.to_thread(write_json, path, record.to_dict())
        logger.info(f"💾 Saved Phase 2 data for {len(summary_players)} players "
                    f"(3 rounds + sum, clan: {clan}, week: {week_number}/{year})")
        return record

    async def get_results(self, phase: int, guild_id: str, week_number: int, year: int,
                          clan: str) -> Optional[WeekRecord]:
        return await self._load_record(phase, self.week_path(phase, guild_id, week_number, year, clan))

    async def get_summary(self, phase: int, guild_id: str, week_number: int, year: int,
                          clan: str) -> Optional[WeekSummary]:
        """Player count and top-30 sum of a week record, or None."""
        record = await self.get_results(phase, guild_id, week_number, year, clan)
        if record is None:
            return None

        players = record.players if isinstance(record, Phase1Record) else record.summary_players
        return WeekSummary(
            player_count=len(players),
            top30_sum=top30_sum([p.score for p in players]),
            created_by=record.created_by,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )

    def _scan_week_files(self, phase: int, guild_id: str):
        """Yield (year, week_number, clan, path) for every week file of a guild."""
        base = self.phase_dir(phase, guild_id)
        if not base.is_dir():
            return
        for year_dir in base.iterdir():
            if not year_dir.is_dir() or not year_dir.name.isdigit():
                continue
            for path in year_dir.iterdir():
                match = WEEK_FILE_PATTERN.match(path.name)
                if match:
                    yield int(year_dir.name), int(match.group(1)), match.group(2), path

    def _available_weeks_sync(self, phase: int, guild_id: str) -> List[AvailableWeek]:
        weeks: Dict[Tuple[int, int], AvailableWeek] = {}
        for year, week_number, clan, path in self._scan_week_files(phase, guild_id):
            try:
                created_at = (read_json(path) or {}).get("createdAt")
            except (OSError, ValueError) as e:
                logger.warning(f"⚠️ Skipping unreadable week file {path}: {e}")
                continue

            week = weeks.get((year, week_number))
            if week is None:
                week = weeks[(year, week_number)] = AvailableWeek(
                    week_number=week_number, year=year, clans=[], created_at=created_at
                )
            week.clans.append(clan)
            if created_at and (week.created_at is None or created_at < week.created_at):
                week.created_at = created_at

        return sorted(weeks.values(), key=lambda w: (w.year, w.week_number), reverse=True)

    async def get_available_weeks(self, phase: int, guild_id: str) -> List[AvailableWeek]:
        """Weeks that have data, newest first, with the clans present in each."""
        return await asyncio.to_thread(self._available_weeks_sync, phase, guild_id)

    def _historical_best_sync(self, guild_id: str, user_id: str, before_week: int, before_year: int) -> Optional[int]:
        best = None
        for year, week_number, clan, path in self._scan_week_files(1, guild_id):
            if not (year < before_year or (year == before_year and week_number < before_week)):
                continue
            try:
                data = read_json(path) or {}
            except (OSError, ValueError) as e:
                logger.warning(f"⚠️ Skipping unreadable week file {path}: {e}")
                continue
            for player in data.get("players", []):
                if str(player.get("userId")) == str(user_id):
                    score = int(player.get("score", 0))
                    if best is None or score > best:
                        best = score
        return best

    async def get_player_historical_best_score(self, guild_id: str, user_id: str,
                                               before_week: int, before_year: int) -> Optional[int]:
        """Best Phase 1 score of a player in any clan strictly before the given week."""
        return await asyncio.to_thread(self._historical_best_sync, guild_id, user_id, before_week, before_year)

    def _migrate_sync(self) -> MigrationResult:
        result = MigrationResult(success=True)

        for phase in (1, 2):
            source = self.legacy_path(phase)
            if not source.exists():
                logger.info(f"⏭️ No legacy Phase {phase} file, skipping")
                continue

            logger.info(f"📦 Migrating {source.name}...")
            data = read_json(source) or {}
            for guild_id, weeks in data.items():
                for week_key, clans in weeks.items():
                    for clan, clan_data in clans.items():
                        try:
                            week_number, year = (int(part) for part in week_key.split("-"))
                            write_json(self.week_path(phase, guild_id, week_number, year, clan), clan_data)
                        except (ValueError, StorageError) as e:
                            logger.error(f"❌ Migration error for {guild_id}/{week_key}/{clan}: {e}")
                            result.errors += 1
                            continue
                        if phase == 1:
                            result.phase1_count += 1
                        else:
                            result.phase2_count += 1

            backup = source.with_name(source.name + ".backup")
            if backup.exists():
                logger.info(f"ℹ️ Backup {backup.name} already exists, leaving it untouched")
            else:
                shutil.copy2(source, backup)
                logger.info(f"💾 Created backup: {backup.name}")

        return result

    async def migrate_to_split_files(self) -> MigrationResult:
        """One-shot conversion of the legacy monolithic files. Safe to run again."""
        logger.info("🔄 Starting migration to split files...")
        try:
            result = await asyncio.to_thread(self._migrate_sync)
        except (OSError, ValueError, AttributeError) as e:
            logger.error(f"❌ Migration failed: {e}")
            return MigrationResult(success=False, error=str(e))

        logger.info(f"✅ Migration finished: Phase 1: {result.phase1_count} records, "
                    f"Phase 2: {result.phase2_count} records, errors: {result.errors}")
        return result
