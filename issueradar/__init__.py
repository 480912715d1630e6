"""IssueRadar: AI-written digests of a repository's issues.

Connect a GitHub repository, fetch its issues page by page and have a chat
model summarize them into a digest stored per project. This package can be
used both as a command-line tool and as a Python SDK.

Quick Start:
    ```python
    import issueradar

    ref = issueradar.parse_repo_url("git@github.com:pmndrs/jotai.git")
    # ParsedRepoRef(user='pmndrs', repo='jotai', provider=<Provider.GITHUB: 'GITHUB'>)

    issues = issueradar.fetch_issue_pages("https://github.com/pmndrs/jotai", pages=2)

    settings = issueradar.load_settings()
    store = issueradar.get_store(settings)
    project = store.create_project("jotai", "https://github.com/pmndrs/jotai")
    backend = issueradar.get_chat_backend("ollama", model="llama3.2:3b")
    digest = issueradar.DigestComposer(backend, store, settings).compose(project.id, issues)
    ```

CLI Usage:
    ```bash
    issueradar parse https://github.com/pmndrs/jotai
    issueradar issues https://github.com/pmndrs/jotai --pages 3 --format md
    issueradar digest run <project-id> --summarizer openai
    ```
"""

__version__ = "0.1.0"

# Re-export main functionality for easy importing
from .core import (
    parse_repo_url,
    require_known,
    Provider,
    ParsedRepoRef,
    Issue,
    ChatMessage,
    Project,
    Digest,
    get_issues,
    fetch_issue_pages,
    build_digest_messages,
    get_chat_backend,
    DigestComposer,
    generate_digest,
    get_store,
    load_settings,
    Settings,
)

__all__ = [
    "parse_repo_url",
    "require_known",
    "Provider",
    "ParsedRepoRef",
    "Issue",
    "ChatMessage",
    "Project",
    "Digest",
    "get_issues",
    "fetch_issue_pages",
    "build_digest_messages",
    "get_chat_backend",
    "DigestComposer",
    "generate_digest",
    "get_store",
    "load_settings",
    "Settings",
]
