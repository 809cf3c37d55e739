"""
Configuration Management for MeetSync

Loads configuration from ~/.meetsync/config.json and environment variables.
"""

import os
import json
import logging
from pathlib import Path
from dataclasses import dataclass, field

from dotenv import load_dotenv

logger = logging.getLogger("meetsync.common.config")

# Default config paths
CONFIG_DIR = Path.home() / ".meetsync"
CONFIG_PATH = CONFIG_DIR / "config.json"
TRANSCRIPTS_DIR = CONFIG_DIR / "transcripts"


@dataclass
class SlackConfig:
    """Slack app configuration"""
    bot_token: str = ""
    signing_secret: str = ""
    approval_channel: str = ""


@dataclass
class NotionConfig:
    """Notion integration configuration"""
    api_key: str = ""
    fallback_database_id: str = ""
    api_version: str = "2022-06-28"


@dataclass
class LLMConfig:
    """LLM provider configuration shared by extractor, comparator and resolver"""
    provider: str = "openai"
    anthropic_api_key: str = ""
    anthropic_model: str = "claude-sonnet-4-20250514"
    openai_api_key: str = ""
    openai_model: str = "gpt-4o-mini"
    google_api_key: str = ""
    google_model: str = "gemini-2.0-flash-exp"


@dataclass
class ServerConfig:
    """HTTP server configuration"""
    host: str = "0.0.0.0"
    port: int = 3001
    log_level: str = "INFO"


@dataclass
class SessionConfig:
    """Proposal session lifetime and background work limits"""
    session_ttl_seconds: int = 86400
    feedback_ttl_seconds: int = 3600
    sweep_interval_seconds: int = 300
    max_background_tasks: int = 8


@dataclass
class MeetSyncConfig:
    """Main MeetSync configuration"""
    slack: SlackConfig = field(default_factory=SlackConfig)
    notion: NotionConfig = field(default_factory=NotionConfig)
    llm: LLMConfig = field(default_factory=LLMConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    session: SessionConfig = field(default_factory=SessionConfig)
    transcripts_dir: str = str(TRANSCRIPTS_DIR)


def _parse_slack_config(data: dict) -> SlackConfig:
    slack_data = data.get("slack", {})
    return SlackConfig(
        bot_token=slack_data.get("bot_token", ""),
        signing_secret=slack_data.get("signing_secret", ""),
        approval_channel=slack_data.get("approval_channel", ""),
    )


def _parse_notion_config(data: dict) -> NotionConfig:
    notion_data = data.get("notion", {})
    return NotionConfig(
        api_key=notion_data.get("api_key", ""),
        fallback_database_id=notion_data.get("fallback_database_id", ""),
        api_version=notion_data.get("api_version", "2022-06-28"),
    )


def _parse_llm_config(data: dict) -> LLMConfig:
    llm_data = data.get("llm", {})
    return LLMConfig(
        provider=llm_data.get("provider", "openai"),
        anthropic_api_key=llm_data.get("anthropic_api_key", ""),
        anthropic_model=llm_data.get("anthropic_model", "claude-sonnet-4-20250514"),
        openai_api_key=llm_data.get("openai_api_key", ""),
        openai_model=llm_data.get("openai_model", "gpt-4o-mini"),
        google_api_key=llm_data.get("google_api_key", ""),
        google_model=llm_data.get("google_model", "gemini-2.0-flash-exp"),
    )


def _parse_server_config(data: dict) -> ServerConfig:
    server_data = data.get("server", {})
    return ServerConfig(
        host=server_data.get("host", "0.0.0.0"),
        port=int(server_data.get("port", 3001)),
        log_level=server_data.get("log_level", "INFO"),
    )


def _parse_session_config(data: dict) -> SessionConfig:
    session_data = data.get("session", {})
    return SessionConfig(
        session_ttl_seconds=int(session_data.get("session_ttl_seconds", 86400)),
        feedback_ttl_seconds=int(session_data.get("feedback_ttl_seconds", 3600)),
        sweep_interval_seconds=int(session_data.get("sweep_interval_seconds", 300)),
        max_background_tasks=int(session_data.get("max_background_tasks", 8)),
    )


def load_config(config_path: Path = None) -> MeetSyncConfig:
    """
    Load configuration from file and environment variables.

    Priority (highest to lowest):
    1. Environment variables (a local .env file is honoured)
    2. Config file (~/.meetsync/config.json)
    3. Default values
    """
    load_dotenv()
    path = config_path or CONFIG_PATH
    config = MeetSyncConfig()

    if path.exists():
        try:
            with open(path) as f:
                data = json.load(f)

            config.slack = _parse_slack_config(data)
            config.notion = _parse_notion_config(data)
            config.llm = _parse_llm_config(data)
            config.server = _parse_server_config(data)
            config.session = _parse_session_config(data)
            config.transcripts_dir = data.get("transcripts_dir", str(TRANSCRIPTS_DIR))
        except (json.JSONDecodeError, IOError, ValueError) as e:
            logger.warning("Failed to load config file %s: %s", path, e)

    _env_map = {
        "SLACK_BOT_TOKEN": (config.slack, "bot_token"),
        "SLACK_SIGNING_SECRET": (config.slack, "signing_secret"),
        "SLACK_APPROVAL_CHANNEL": (config.slack, "approval_channel"),
        "NOTION_API_KEY": (config.notion, "api_key"),
        "NOTION_TASK_DB_ID": (config.notion, "fallback_database_id"),
        "NOTION_VERSION": (config.notion, "api_version"),
        "ANTHROPIC_API_KEY": (config.llm, "anthropic_api_key"),
        "ANTHROPIC_MODEL": (config.llm, "anthropic_model"),
        "OPENAI_API_KEY": (config.llm, "openai_api_key"),
        "OPENAI_MODEL": (config.llm, "openai_model"),
        "GOOGLE_API_KEY": (config.llm, "google_api_key"),
        "GEMINI_API_KEY": (config.llm, "google_api_key"),
        "GOOGLE_MODEL": (config.llm, "google_model"),
        "MEETSYNC_LLM_PROVIDER": (config.llm, "provider"),
        "MEETSYNC_HOST": (config.server, "host"),
        "MEETSYNC_LOG_LEVEL": (config.server, "log_level"),
    }
    for env_var, (section, attr) in _env_map.items():
        val = os.getenv(env_var)
        if val:
            setattr(section, attr, val)

    if os.getenv("MEETSYNC_PORT"):
        config.server.port = int(os.getenv("MEETSYNC_PORT"))
    if os.getenv("MEETSYNC_SESSION_TTL"):
        config.session.session_ttl_seconds = int(os.getenv("MEETSYNC_SESSION_TTL"))
    if os.getenv("MEETSYNC_TRANSCRIPTS_DIR"):
        config.transcripts_dir = os.getenv("MEETSYNC_TRANSCRIPTS_DIR")

    return config


def ensure_directories(config: MeetSyncConfig) -> None:
    """Ensure required directories exist"""
    CONFIG_DIR.mkdir(parents=True, exist_ok=True)
    Path(config.transcripts_dir).expanduser().mkdir(parents=True, exist_ok=True)
