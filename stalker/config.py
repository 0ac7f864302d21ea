"""Bot configuration constants and per-guild server settings."""

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from .exceptions import ServerNotConfiguredError


logger = logging.getLogger(__name__)

TIMEZONE = os.getenv("TIMEZONE", "Europe/Warsaw")

# Storage locations
DATA_DIR = Path(os.getenv("DATA_DIR", "data"))
PUNISHMENTS_FILE = DATA_DIR / "punishments.json"
WEEKLY_REMOVAL_FILE = DATA_DIR / "weekly_removal.json"
TEMP_DIR = Path(os.getenv("TEMP_DIR", "temp"))
PHASE_TEMP_DIR = TEMP_DIR / "phase1"
PROCESSED_DIR = Path(os.getenv("PROCESSED_DIR", "processed_ocr"))
SERVERS_CONFIG_PATH = Path(os.getenv("SERVERS_CONFIG_PATH", "servers.json"))

# OCR
OCR_LANGUAGE = "pol"
OCR_CHAR_WHITELIST = (
    "abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"
    ".,;:!?-()[]{}/\""
)
IMAGE_PROCESSING = {
    "white_threshold": 180,
    "contrast": 2.5,
    "gamma": 1.8,
    "median": 3,
    "blur": 0.3,
    "upscale": 4.0,
}
SAVE_PROCESSED_IMAGES = os.getenv("SAVE_PROCESSED_IMAGES", "true").lower() in ("1", "true", "yes")
MAX_PROCESSED_FILES = 400
SIMILARITY_LOG_THRESHOLD = 0.3

# Sessions and queue
SESSION_TIMEOUT_SECONDS = 15 * 60
RESERVATION_SECONDS = 5 * 60
MAX_IMAGES_PER_MESSAGE = 10
PHASE2_ROUNDS = 3
TEMP_FILE_MAX_AGE_HOURS = 1
MEMBER_FETCH_ATTEMPTS = 3

# Punishment points
POINT_LIMITS = {
    "punishment_role": 2,
    "lottery_ban": 3,
}
WARNING_POINTS = (2, 3, 5)


@dataclass
class ServerConfig:
    """Settings for one guild, as stored in servers.json."""
    guild_id: str
    target_roles: Dict[str, str]
    role_display_names: Dict[str, str] = field(default_factory=dict)
    warning_channels: Dict[str, str] = field(default_factory=dict)
    punishment_role_id: Optional[str] = None
    lottery_ban_role_id: Optional[str] = None
    allowed_punish_roles: List[str] = field(default_factory=list)
    enabled: bool = True

    @classmethod
    def from_dict(cls, guild_id: str, data: dict) -> "ServerConfig":
        return cls(
            guild_id=str(guild_id),
            target_roles={str(k): str(v) for k, v in data.get("targetRoles", {}).items()},
            role_display_names=dict(data.get("roleDisplayNames", {})),
            warning_channels={str(k): str(v) for k, v in data.get("warningChannels", {}).items()},
            punishment_role_id=_optional_id(data.get("punishmentRoleId")),
            lottery_ban_role_id=_optional_id(data.get("lotteryBanRoleId")),
            allowed_punish_roles=[str(r) for r in data.get("allowedPunishRoles", [])],
            enabled=data.get("enabled", True) is not False,
        )

    def clan_name(self, clan: str) -> str:
        """Human readable name for a clan key."""
        return self.role_display_names.get(clan, clan)


def _optional_id(value) -> Optional[str]:
    return str(value) if value not in (None, "") else None


class ServerSettings:
    """Loads servers.json and answers per-guild lookups."""

    def __init__(self, path: Path = SERVERS_CONFIG_PATH):
        self.path = Path(path)
        self.servers: Dict[str, ServerConfig] = {}

    def load(self) -> int:
        """Read the settings file. Returns the number of configured guilds."""
        if not self.path.exists():
            logger.warning(f"⚠️ {self.path} not found - no guild is configured")
            self.servers = {}
            return 0

        with self.path.open("r", encoding="utf-8") as f:
            raw = json.load(f)

        self.servers = {
            str(guild_id): ServerConfig.from_dict(guild_id, data)
            for guild_id, data in raw.items()
            if not guild_id.startswith("_") and isinstance(data, dict)
        }
        logger.info(f"✅ Loaded configuration for {len(self.servers)} server(s)")
        return len(self.servers)

    def get(self, guild_id) -> Optional[ServerConfig]:
        """Settings for an enabled guild, or None."""
        config = self.servers.get(str(guild_id))
        if config is None:
            return None
        if not config.enabled:
            logger.warning(f"⚠️ Server {guild_id} is disabled in configuration")
            return None
        return config

    def require(self, guild_id) -> ServerConfig:
        config = self.get(guild_id)
        if config is None:
            raise ServerNotConfiguredError(str(guild_id))
        return config

    def configured_guild_ids(self) -> List[str]:
        return [gid for gid, config in self.servers.items() if config.enabled]
