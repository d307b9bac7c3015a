"""
Runtime configuration.

Settings come from the environment (a .env file at the project root is
loaded first). Prompt templates and the response schema are static JSON
files under data/, loaded once at startup.
"""

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv

from language_coach.errors import ConfigError

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parent.parent

DEFAULT_OPENAI_MODEL = "gpt-5.2"
DEFAULT_HF_MODEL = "mistralai/Mistral-7B-Instruct-v0.2"
DEFAULT_PROMPTS_PATH = PROJECT_ROOT / "data" / "prompts.json"
DEFAULT_SCHEMA_PATH = PROJECT_ROOT / "data" / "schema.json"
DEFAULT_STATE_DIR = PROJECT_ROOT / "state"

BACKEND_OPENAI = "openai"
BACKEND_HUGGINGFACE = "huggingface"
VALID_BACKENDS = {BACKEND_OPENAI, BACKEND_HUGGINGFACE}

TRUE_VALUES = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    """
    Attributes:
        llm_backend: "openai" (Responses API) or "huggingface" (local model)
        openai_api_key: Secret; never logged (None means calls will fail)
        openai_model: Responses API model name
        hf_model_name: HuggingFace model id for the local backend
        hf_load_in_4bit: NF4 quantization for the local backend
        state_dir: Directory for session snapshots
        prompts_path: Prompt bundle JSON
        schema_path: Response JSON schema
    """
    llm_backend: str = BACKEND_OPENAI
    openai_api_key: Optional[str] = None
    openai_model: str = DEFAULT_OPENAI_MODEL
    hf_model_name: str = DEFAULT_HF_MODEL
    hf_load_in_4bit: bool = True
    state_dir: str = str(DEFAULT_STATE_DIR)
    prompts_path: str = str(DEFAULT_PROMPTS_PATH)
    schema_path: str = str(DEFAULT_SCHEMA_PATH)

    def describe(self) -> Dict[str, Any]:
        """Loggable view (API key masked)"""
        key = self.openai_api_key
        masked = f"{key[:4]}...{key[-4:]}" if key and len(key) > 12 else ("***" if key else None)
        return {
            "llm_backend": self.llm_backend,
            "openai_api_key": masked,
            "openai_model": self.openai_model,
            "hf_model_name": self.hf_model_name,
            "hf_load_in_4bit": self.hf_load_in_4bit,
            "state_dir": self.state_dir,
            "prompts_path": self.prompts_path,
            "schema_path": self.schema_path
        }


def load_settings(env_file: Optional[str] = None) -> Settings:
    """
    Build Settings from the environment.

    Args:
        env_file: Explicit .env path (default: search from the working dir)

    Raises:
        ConfigError: Unknown LLM_BACKEND
    """
    if load_dotenv(env_file):
        logger.info("Loaded .env file")
    else:
        logger.info("No .env file found; using process environment only")

    backend = os.getenv("LLM_BACKEND", BACKEND_OPENAI).strip().lower()
    if backend not in VALID_BACKENDS:
        raise ConfigError(f"LLM_BACKEND must be one of {sorted(VALID_BACKENDS)}, got {backend!r}")

    settings = Settings(
        llm_backend=backend,
        openai_api_key=os.getenv("OPENAI_API_KEY") or None,
        openai_model=os.getenv("OPENAI_MODEL") or DEFAULT_OPENAI_MODEL,
        hf_model_name=os.getenv("HF_MODEL_NAME") or DEFAULT_HF_MODEL,
        hf_load_in_4bit=os.getenv("HF_LOAD_IN_4BIT", "1").strip().lower() in TRUE_VALUES,
        state_dir=os.getenv("LANGUAGE_COACH_STATE_DIR") or str(DEFAULT_STATE_DIR),
        prompts_path=os.getenv("PROMPTS_PATH") or str(DEFAULT_PROMPTS_PATH),
        schema_path=os.getenv("SCHEMA_PATH") or str(DEFAULT_SCHEMA_PATH)
    )

    if settings.llm_backend == BACKEND_OPENAI and not settings.openai_api_key:
        logger.warning("OPENAI_API_KEY not set; model calls will fail until it is configured")

    logger.info(f"Settings: {settings.describe()}")
    return settings


def _load_json_file(path: str, label: str) -> Any:
    file_path = Path(path)
    try:
        with open(file_path, 'r', encoding='utf-8') as f:
            return json.load(f)
    except FileNotFoundError:
        raise ConfigError(f"{label} not found: {file_path}")
    except json.JSONDecodeError as e:
        raise ConfigError(f"{label} is not valid JSON ({file_path}): {e}")


def load_prompt_bundle(path: str) -> Dict[str, Any]:
    """
    Raises:
        ConfigError: Missing file, invalid JSON, or not an object with system_lines[]
    """
    bundle = _load_json_file(path, "Prompt bundle")
    if not isinstance(bundle, dict):
        raise ConfigError(f"Prompt bundle must be a JSON object: {path}")
    if not isinstance(bundle.get("system_lines"), list):
        raise ConfigError(f"Prompt bundle is missing system_lines[]: {path}")

    logger.info(f"Loaded prompt bundle: {path} ({len(bundle)} keys)")
    return bundle


def load_response_schema(path: str) -> Dict[str, Any]:
    """
    Raises:
        ConfigError: Missing file, invalid JSON, or not a JSON object
    """
    schema = _load_json_file(path, "Response schema")
    if not isinstance(schema, dict):
        raise ConfigError(f"Response schema must be a JSON object: {path}")

    logger.info(f"Loaded response schema: {path}")
    return schema
