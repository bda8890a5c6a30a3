import os
import json
import asyncio
from pathlib import Path
from typing import Any, Dict, Optional
import logging
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class TranscodeOpsConfig(BaseModel):
    # General settings
    instance_name: str = "TranscodeOps"

    # Encoder binaries
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"

    # Transcoding
    output_path: str = "/data/transcodes"
    max_thread_consumption: int = Field(8, ge=1)

    # Performance guardrails (0 disables a check)
    cpu_guard_pct: int = Field(85, ge=0, le=100)
    min_memory_gb: float = Field(0, ge=0)
    guard_check_interval_sec: float = Field(5, gt=0)

    # Streaming
    stream_temp_dir: Optional[str] = None
    stream_segment_wait_sec: float = Field(30, gt=0)
    stream_poll_interval_sec: float = Field(1, gt=0)

    # Events
    enable_events: bool = True


class ConfigService:
    def __init__(self):
        self.config_path = Path(os.getenv("CONFIG_PATH", "/data/config/config.json"))
        self.config: TranscodeOpsConfig = TranscodeOpsConfig()
        self._lock = None

    async def load_config(self) -> TranscodeOpsConfig:
        """Load configuration from file and environment variables"""
        if self._lock is None:
            self._lock = asyncio.Lock()
        async with self._lock:
            if self.config_path.exists():
                try:
                    with open(self.config_path, 'r') as f:
                        data = json.load(f)
                    self.config = TranscodeOpsConfig(**data)
                    logger.info(f"Loaded config from {self.config_path}")
                except Exception as e:
                    logger.error(f"Failed to load config: {e}")

            self._apply_env_overrides()

            await self._save_config()
            return self.config

    async def _save_config(self) -> None:
        """Write the config file. Callers hold the lock."""
        try:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.config_path, 'w') as f:
                json.dump(self.config.model_dump(), f, indent=2, default=str)
            logger.info(f"Saved config to {self.config_path}")
        except Exception as e:
            logger.error(f"Failed to save config: {e}")

    async def update_config(self, updates: Dict[str, Any]) -> TranscodeOpsConfig:
        """Update configuration with new values, validating the result"""
        if self._lock is None:
            self._lock = asyncio.Lock()
        async with self._lock:
            data = self.config.model_dump()
            data.update({k: v for k, v in updates.items() if k in data})
            self.config = TranscodeOpsConfig(**data)

            await self._save_config()
            return self.config

    def _apply_env_overrides(self):
        """Apply environment variable overrides to config"""
        env_mapping = {
            "FFMPEG_PATH": "ffmpeg_path",
            "FFPROBE_PATH": "ffprobe_path",
            "OUTPUT_PATH": "output_path",
            "STREAM_TEMP_DIR": "stream_temp_dir",
            "MAX_THREAD_CONSUMPTION": ("max_thread_consumption", int),
            "CPU_GUARD_PCT": ("cpu_guard_pct", int),
            "ENABLE_EVENTS": ("enable_events", lambda x: x.lower() == "true"),
        }

        for env_key, config_key in env_mapping.items():
            env_value = os.getenv(env_key)
            if env_value is not None:
                if isinstance(config_key, tuple):
                    attr_name, converter = config_key
                    try:
                        setattr(self.config, attr_name, converter(env_value))
                    except Exception as e:
                        logger.warning(f"Failed to convert env var {env_key}: {e}")
                else:
                    setattr(self.config, config_key, env_value)

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value by key"""
        return getattr(self.config, key, default)

    def get_all(self) -> Dict[str, Any]:
        """Get all configuration as dictionary"""
        return self.config.model_dump()
