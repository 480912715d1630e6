"""Configuration management for issueradar.

This module handles loading and merging configuration from multiple sources:
1. Environment variables (highest priority, `.env` is loaded first)
2. TOML configuration file (medium priority)
3. Default values (lowest priority)

Example config.toml:
    ```toml
    [github]
    per_page = 30
    page_delay = 0.5

    [summarizer]
    kind = "ollama"
    model = "llama3.2:3b"

    [store]
    kind = "local"
    role = "USER"

    [cache]
    dir = ".cache"
    ```

Environment Variables:
    GITHUB_TOKEN: GitHub personal access token (optional)
    OPENAI_API_KEY: Key for the openai summarizer
    OLLAMA_BASE_URL: Override Ollama server URL
    SUMMARIZER: Override summarizer kind
    SUMMARY_MODEL: Override model name
    SUMMARY_NUM_CTX: Override context length
    ISSUERADAR_STORE: Override store kind
    ISSUERADAR_API_URL: Base URL of the IssueRadar web app (api store)
    ISSUERADAR_SESSION_TOKEN: Session cookie value for the api store
    ISSUERADAR_ROLE: USER or ADMIN, selects the project/digest limits
    ISSUERADAR_PAGE_DELAY: Seconds to wait before each issues page
"""
from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
from typing import Dict
import os
import tomllib  # Python 3.11+

from dotenv import load_dotenv

load_dotenv()

# role -> (max projects, max digests per project)
LIMITS: Dict[str, tuple[int, int]] = {
    "USER": (3, 10),
    "ADMIN": (99, 9999),
}


@dataclass
class Settings:
    """Runtime configuration derived from `config.toml` and environment.

    Values are merged with precedence: environment > config file > defaults.

    Attributes:
        github_api_url: Base URL of the GitHub REST API.
        github_token: Token sent as a bearer credential, if any.
        per_page: Issues requested per page.
        page_delay: Seconds slept before each page of a multi-page fetch.
        max_retries: Attempts per GitHub request on rate limits / 5xx.
        backoff_base: Base of the exponential backoff, in seconds.
        backoff_max: Cap of a single backoff wait, in seconds.
        summarizer_kind: "basic", "ollama" or "openai".
        model: Chat model name.
        num_ctx: Context length for Ollama.
        ollama_base_url: Base URL for the Ollama server.
        openai_api_key: Key for the OpenAI chat-completion API.
        openai_model: Model used by the openai summarizer.
        max_body_chars: Issue body characters kept per message.
        store_kind: "local" or "api".
        api_url: Base URL of the IssueRadar web app.
        session_token: Session cookie used by the api store.
        role: Account role selecting the limits in `LIMITS`.
        persist_attempts: Attempts to save a generated digest.
        cache_dir: Directory for the local store and unsaved digests.
    """

    # GitHub
    github_api_url: str = "https://api.github.com"
    github_token: str | None = None
    per_page: int = 30
    page_delay: float = 0.5
    max_retries: int = 3
    backoff_base: float = 1.0
    backoff_max: float = 16.0

    # Summarizer
    summarizer_kind: str = "basic"
    model: str = "llama3.2:3b"
    num_ctx: int = 8192
    ollama_base_url: str = "http://localhost:11434"
    openai_api_key: str | None = None
    openai_model: str = "gpt-3.5-turbo"
    max_body_chars: int = 1200

    # Store
    store_kind: str = "local"
    api_url: str = "http://localhost:3000"
    session_token: str | None = None
    role: str = "USER"
    persist_attempts: int = 3

    # General
    cache_dir: str = ".cache"

    @property
    def max_projects(self) -> int:
        return LIMITS.get(self.role.upper(), LIMITS["USER"])[0]

    @property
    def max_digests(self) -> int:
        return LIMITS.get(self.role.upper(), LIMITS["USER"])[1]


def load_config(path: str = "config.toml") -> dict:
    """Load a TOML config file into a dictionary.

    Args:
        path: Path to the TOML configuration file.

    Returns:
        Dictionary containing configuration data, or empty dict if file missing.
    """
    p = Path(path)
    if not p.exists():
        return {}
    with p.open("rb") as f:
        return tomllib.load(f)


def load_settings(config_path: str | None = None) -> Settings:
    """Create a `Settings` object from config file and environment variables.

    Args:
        config_path: Path to TOML config file. Defaults to "config.toml".

    Returns:
        Settings object with merged configuration from all sources.
    """
    cfg = load_config(config_path or "config.toml")

    s = Settings()

    # github section
    gh = cfg.get("github", {})
    s.github_api_url = gh.get("api_url", s.github_api_url)
    s.github_token = os.getenv("GITHUB_TOKEN", gh.get("token", s.github_token))
    s.per_page = int(gh.get("per_page", s.per_page))
    s.page_delay = float(os.getenv("ISSUERADAR_PAGE_DELAY", gh.get("page_delay", s.page_delay)))
    s.max_retries = int(gh.get("max_retries", s.max_retries))
    s.backoff_base = float(gh.get("backoff_base", s.backoff_base))
    s.backoff_max = float(gh.get("backoff_max", s.backoff_max))

    # summarizer section
    summ = cfg.get("summarizer", {})
    s.summarizer_kind = os.getenv("SUMMARIZER", summ.get("kind", s.summarizer_kind))
    s.model = os.getenv("SUMMARY_MODEL", summ.get("model", s.model))
    s.num_ctx = int(os.getenv("SUMMARY_NUM_CTX", summ.get("num_ctx", s.num_ctx)))
    s.ollama_base_url = os.getenv("OLLAMA_BASE_URL", summ.get("ollama_base_url", s.ollama_base_url))
    s.openai_api_key = os.getenv("OPENAI_API_KEY", s.openai_api_key)
    s.openai_model = summ.get("openai_model", s.openai_model)
    s.max_body_chars = int(summ.get("max_body_chars", s.max_body_chars))

    # store section
    st = cfg.get("store", {})
    s.store_kind = os.getenv("ISSUERADAR_STORE", st.get("kind", s.store_kind))
    s.api_url = os.getenv("ISSUERADAR_API_URL", st.get("api_url", s.api_url))
    s.session_token = os.getenv("ISSUERADAR_SESSION_TOKEN", s.session_token)
    s.role = os.getenv("ISSUERADAR_ROLE", st.get("role", s.role)).upper()
    s.persist_attempts = int(st.get("persist_attempts", s.persist_attempts))

    # cache section
    ch = cfg.get("cache", {})
    s.cache_dir = ch.get("dir", s.cache_dir)

    return s
