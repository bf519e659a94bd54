"""Configuration loader."""

import json
import os
from pathlib import Path
from types import SimpleNamespace
from typing import Any, Dict

from dotenv import load_dotenv
from loguru import logger

from core.llm import get_api_key_for_model

env_path = Path(__file__).parent / ".env"
if env_path.exists():
    load_dotenv(dotenv_path=env_path, override=True)
else:
    load_dotenv()

OVERLAY_FILE = "hqbot.json"
CONFIRM_MODES = ("auto", "gate")

_cached_config = None


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except ValueError:
        logger.warning(f"Invalid {name} in .env, defaulting to {default}.")
        return default


def _env_bool(name: str, default: bool) -> bool:
    return os.getenv(name, "true" if default else "false").lower() == "true"


def load_config(force_reload=False):
    """Load configuration from environment variables. Cached after first call."""
    global _cached_config
    if _cached_config is not None and not force_reload:
        return _cached_config

    config = SimpleNamespace()

    config.web = SimpleNamespace()
    config.web.enabled = _env_bool("ENABLE_WEB", True)
    try:
        config.web.port = int(os.getenv("WEB_PORT") or os.getenv("PORT") or "8000")
    except ValueError:
        logger.warning("Invalid WEB_PORT/PORT in .env, defaulting to 8000.")
        config.web.port = 8000

    config.llm = SimpleNamespace()
    config.llm.model = os.getenv("LLM_MODEL") or "gemini/gemini-2.0-flash"
    config.llm.api_key = get_api_key_for_model(config.llm.model)
    config.llm.base_url = (os.getenv("LLM_BASE_URL") or "").rstrip("/") or None

    is_local_llm = "ollama" in config.llm.model or config.llm.base_url
    if not config.llm.api_key and not is_local_llm:
        logger.warning("No valid LLM API Key found in environment. The ask skill is disabled.")

    config.workflow = SimpleNamespace()
    mode = os.getenv("WORKFLOW_CONFIRM_MODE", "auto").lower()
    if mode not in CONFIRM_MODES:
        logger.warning(f"Invalid WORKFLOW_CONFIRM_MODE '{mode}', defaulting to auto.")
        mode = "auto"
    config.workflow.confirm_mode = mode
    config.workflow.step_timeout = _env_float("WORKFLOW_STEP_TIMEOUT", 300.0)
    config.workflow.confirm_timeout = _env_float("WORKFLOW_CONFIRM_TIMEOUT", 300.0)
    config.workflow.history_size = 20

    config.skills = SimpleNamespace()
    config.skills.dirs = [
        d.strip() for d in os.getenv("SKILL_DIRS", "./skills").split(",") if d.strip()
    ]
    config.skills.watch = _env_bool("SKILLS_WATCH", False)
    config.skills.entries = {}

    config.data_dir = os.getenv("DATA_DIR", "data")
    config.auto_repo = os.getenv("DEFAULT_REPO") or None
    config.api_key = os.getenv("APP_API_KEY") or None
    config.allow_from = [s.strip() for s in os.getenv("ALLOW_FROM", "").split(",") if s.strip()]

    overlay_path = os.path.join(os.getcwd(), OVERLAY_FILE)
    if os.path.exists(overlay_path):
        try:
            with open(overlay_path, "r", encoding="utf-8") as f:
                dynamic_config = json.load(f)

            if isinstance(dynamic_config.get("skills"), dict):
                skills = dynamic_config["skills"]
                if isinstance(skills.get("entries"), dict):
                    config.skills.entries = skills["entries"]
                if isinstance(skills.get("dirs"), list):
                    config.skills.dirs = [str(d) for d in skills["dirs"]]
                if "watch" in skills:
                    config.skills.watch = bool(skills["watch"])

            for section in ("llm", "web", "workflow"):
                if isinstance(dynamic_config.get(section), dict):
                    for k, v in dynamic_config[section].items():
                        setattr(getattr(config, section), k, v)
        except Exception as e:
            logger.error(f"Error loading {OVERLAY_FILE}: {e}")

    _cached_config = config
    return config


def reload_config():
    """Force-reload config (call after .env changes)."""
    return load_config(force_reload=True)


def skill_settings(config) -> Dict[str, Any]:
    """Settings handed to every skill as its `config`."""
    return {
        "workflow": dict(vars(config.workflow)),
        "auto_repo": config.auto_repo,
        "data_dir": config.data_dir,
    }
