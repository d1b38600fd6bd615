"""
Application controller
Wires storage, feature stores, the Gemini gateway and audio together
"""

from __future__ import annotations

import logging
from pathlib import Path

from .ai import CompanionGateway
from .audio import AudioPlayer
from .companion import CompanionSession
from .config import AppConfig
from .paths import config_path, ensure_directories, storage_path
from .storage import KeyValueStorage, LocalStore, MemoryKeyValueStorage, SqliteKeyValueStorage
from .stores import DailyAffirmationCache, GoalStore, JournalStore, VisionBoardStore

logger = logging.getLogger(__name__)


class AppController:
    """Owns every long-lived object the window talks to"""

    def __init__(
        self,
        config: AppConfig,
        storage: KeyValueStorage,
        gateway: CompanionGateway | None = None,
        player: AudioPlayer | None = None,
    ):
        self.config = config
        self.local_store = LocalStore(storage)

        self.journal = JournalStore(self.local_store)
        self.goals = GoalStore(self.local_store)
        self.vision_board = VisionBoardStore(self.local_store)
        self.affirmations = DailyAffirmationCache(self.local_store)

        self.gateway = gateway or self._build_gateway()
        self.player = player or AudioPlayer()
        self.companion = CompanionSession(self.gateway)

        if not self.gateway.is_configured:
            logger.warning("Gemini API key not configured; AI features will use fallback answers")

    @classmethod
    def open(cls, data_dir: Path | None = None, ephemeral: bool = False) -> AppController:
        """Build a controller over the on-disk data directory (or memory)"""
        base = ensure_directories(data_dir)
        config = AppConfig(config_path(base))
        storage: KeyValueStorage
        if ephemeral:
            storage = MemoryKeyValueStorage()
        else:
            storage = SqliteKeyValueStorage(storage_path(base))
        return cls(config, storage)

    def _build_gateway(self) -> CompanionGateway:
        return CompanionGateway(
            api_key=self.config.api_key,
            chat_model=str(self.config.get("chat_model")),
            vision_model=str(self.config.get("vision_model")),
            speech_model=str(self.config.get("speech_model")),
            voice=str(self.config.get("voice")),
            timeout_seconds=self.config.request_timeout,
        )

    def reload_gateway(self) -> None:
        """Rebuild the gateway after settings changed; chat history is kept"""
        self.gateway = self._build_gateway()
        self.companion.use_gateway(self.gateway)

    def todays_affirmation(self) -> str:
        return self.affirmations.today(self.gateway.generate_affirmation)

    def new_affirmation(self) -> str:
        return self.affirmations.refresh(self.gateway.generate_affirmation)
