"""Core functionality for IssueRadar.

This module contains the core business logic for:
- Repository URL parsing
- Issue retrieval from the GitHub API
- Digest composition with a chat backend
- Project and digest persistence
- Configuration management
"""

from .url_parser import parse_repo_url, require_known, UnsupportedRepoUrlError
from .models import Provider, ParsedRepoRef, Issue, ChatMessage, Project, Digest
from .issues import get_issues, fetch_issue_pages, IssueFetchError, UnsupportedProviderError
from .digest import (
    build_digest_messages,
    get_chat_backend,
    DigestComposer,
    generate_digest,
    DigestError,
    DigestPersistError,
)
from .store import get_store, LocalStore, ApiStore, StoreError, NotFoundError, LimitExceededError
from .config import load_settings, Settings

__all__ = [
    "parse_repo_url",
    "require_known",
    "UnsupportedRepoUrlError",
    "Provider",
    "ParsedRepoRef",
    "Issue",
    "ChatMessage",
    "Project",
    "Digest",
    "get_issues",
    "fetch_issue_pages",
    "IssueFetchError",
    "UnsupportedProviderError",
    "build_digest_messages",
    "get_chat_backend",
    "DigestComposer",
    "generate_digest",
    "DigestError",
    "DigestPersistError",
    "get_store",
    "LocalStore",
    "ApiStore",
    "StoreError",
    "NotFoundError",
    "LimitExceededError",
    "load_settings",
    "Settings",
]
