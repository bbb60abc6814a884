"""
Configuration module for the coding agent.
Handles environment variables, endpoint settings and application settings.
"""

import os
from dataclasses import dataclass
from typing import Optional
from dotenv import load_dotenv, set_key

# Load environment variables from .env file
load_dotenv()


@dataclass
class EndpointConfig:
    """OpenAI-compatible chat endpoint configuration"""
    scheme: str = os.getenv("LLM_SCHEME", "http")
    host: str = os.getenv("LLM_HOST", "localhost")
    port: int = int(os.getenv("LLM_PORT", "11434"))
    api_key: str = os.getenv("LLM_API_KEY", "")
    model: str = os.getenv("LLM_MODEL", "llama3.1")
    timeout: float = float(os.getenv("LLM_TIMEOUT", "120"))
    streaming: bool = os.getenv("LLM_STREAMING", "true").lower() == "true"
    temperature: float = float(os.getenv("LLM_TEMPERATURE", "0.0"))
    top_p: Optional[float] = float(os.getenv("LLM_TOP_P", "")) if os.getenv("LLM_TOP_P") else None

    @property
    def base_url(self) -> str:
        return f"{self.scheme}://{self.host}:{self.port}"

    @property
    def chat_completions_url(self) -> str:
        return f"{self.base_url}/v1/chat/completions"

    @property
    def models_url(self) -> str:
        return f"{self.base_url}/v1/models"

    def has_api_key(self) -> bool:
        return bool(self.api_key)


@dataclass
class AppConfig:
    """Application-specific configuration"""
    title: str = "Coding Agent"
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    log_file: str = os.getenv("LOG_FILE", "codingagent.log")
    working_directory: str = os.getenv("WORKING_DIRECTORY", ".")
    # Tool rounds per user turn, also bounds plan follow-up turns
    max_tool_iterations: int = int(os.getenv("MAX_TOOL_ITERATIONS", "10"))
    history_window: int = int(os.getenv("HISTORY_WINDOW", "10"))
    default_mode: str = os.getenv("DEFAULT_MODE", "Coder")
    modes_file: str = os.getenv("MODES_FILE", "")
    # After each turn with an open plan, ask the evaluator for the next step
    plan_followup_enabled: bool = os.getenv("PLAN_FOLLOWUP_ENABLED", "true").lower() == "true"
    # Continue into point implementation/review/testing once the plan is created
    plan_implementation_enabled: bool = os.getenv("PLAN_IMPLEMENTATION_ENABLED", "false").lower() == "true"
    plans_dir: str = os.getenv("PLANS_DIR", "")
    comm_log_enabled: bool = os.getenv("COMM_LOG_ENABLED", "false").lower() == "true"
    comm_log_file: str = os.getenv("COMM_LOG_FILE", "")


# Global configuration instances
endpoint_config = EndpointConfig()
app_config = AppConfig()


def get_plans_dir() -> str:
    """Directory where plans are persisted."""
    if app_config.plans_dir:
        return app_config.plans_dir
    return os.path.join(os.path.expanduser("~"), ".codingagent", "plans")


def get_comm_log_path() -> str:
    """File receiving the request/response exchange log."""
    if app_config.comm_log_file:
        return app_config.comm_log_file
    return os.path.join(os.path.expanduser("~"), ".codingagent", "communication.jsonl")


def save_default_model(model: str, env_path: str = ".env") -> None:
    """Persist the selected model to .env so the next start picks it up."""
    if not os.path.exists(env_path):
        open(env_path, "a").close()
    set_key(env_path, "LLM_MODEL", model)
    endpoint_config.model = model
