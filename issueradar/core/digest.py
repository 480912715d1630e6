"""Digest composition: issues in, AI-written summary out.

This module turns fetched issues into an ordered chat conversation, asks a
chat backend to summarize it, and saves the answer as a `Digest`:

- Basic backend: fast, LLM-free listing of the issues
- Ollama backend: local LLM via LangChain, traced with Langfuse
- OpenAI backend: chat-completion API, first choice's message content

Saving is retried, and a digest id is chosen before the first attempt so a
retried write cannot store the same digest twice. When every attempt fails
the text is written under `<cache_dir>/unsaved/` instead of being dropped.

Example:
    ```python
    from issueradar.core.digest import DigestComposer, get_chat_backend
    from issueradar.core.issues import fetch_issue_pages

    issues = fetch_issue_pages("https://github.com/pmndrs/jotai", pages=3)
    composer = DigestComposer(get_chat_backend("ollama", model="llama3.2:3b"), store)
    digest = composer.compose(project.id, issues)
    ```
"""
from __future__ import annotations
from pathlib import Path
from typing import Any, List, Sequence
import logging
import os
import re

from langchain_core.messages import AIMessage, HumanMessage, SystemMessage
from langchain_core.output_parsers import StrOutputParser
from langchain_ollama import ChatOllama
from langfuse import get_client
from langfuse.langchain import CallbackHandler
from openai import OpenAI
from tenacity import Retrying, retry_if_exception, stop_after_attempt, wait_exponential

from .config import Settings, load_settings
from .issues import fetch_issue_pages
from .models import ChatMessage, Digest, Issue, Project
from .store import LimitExceededError, NotFoundError, Store, StoreError

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a senior and helpful technical analyst. You will read the given "
    "GitHub issues one by one and summarize them afterwards."
)

DEFAULT_INSTRUCTIONS = [
    "Group the given issues by theme (bugs, feature requests, questions, "
    "documentation) and summarize each group in one condensed paragraph, "
    "mentioning issue numbers where useful.",
    "Format the answer as Markdown with one heading per group. No preamble.",
]


class DigestError(Exception):
    """A digest could not be produced."""


class DigestPersistError(DigestError):
    """A digest was generated but could not be saved.

    Attributes:
        path: File the generated text was written to instead.
    """

    def __init__(self, message: str, path: Path):
        super().__init__(f"{message} (content kept in {path})")
        self.path = path


def _clean_markdown(text: str) -> str:
    """Remove images, code blocks and link targets but keep the prose."""
    lines = [ln for ln in text.splitlines() if not re.search(r"!\[.*\]\(.*\)", ln)]
    raw = "\n".join(lines)
    # [text](url) -> text
    raw = re.sub(r"\[(.*?)\]\(.*?\)", r"\1", raw)
    raw = re.sub(r"`{3}.*?`{3}", "", raw, flags=re.S)
    raw = re.sub(r"<!--.*?-->", "", raw, flags=re.S)
    raw = re.sub(r"\n{3,}", "\n\n", raw)
    return raw.strip()


def _cap(s: str, max_chars: int = 1200) -> str:
    """Cap overly long inputs to keep the prompt inside the context window."""
    return s if len(s) <= max_chars else s[:max_chars] + "\n[...truncated...]"


def issue_to_text(issue: Issue, max_body_chars: int = 1200) -> str:
    """Render an issue as `#<number> <title>` followed by its cleaned body."""
    head = f"#{issue.number} {issue.title}".strip() if issue.number is not None else issue.title
    body = _cap(_clean_markdown(issue.body or ""), max_body_chars)
    return f"{head}\n\n{body}" if body else head


def build_digest_messages(
    issues: Sequence[Issue],
    instructions: Sequence[str] | None = None,
    max_body_chars: int = 1200,
) -> List[ChatMessage]:
    """Build the chat conversation for a digest.

    Order: one system message, one assistant message per issue, then the
    user instructions.

    Args:
        issues: Issues to summarize, in the order they should be read.
        instructions: User instructions; `DEFAULT_INSTRUCTIONS` when omitted.
        max_body_chars: Characters of each issue body to keep.

    Returns:
        Messages ready for any chat backend.
    """
    messages = [ChatMessage(role="system", content=SYSTEM_PROMPT)]
    messages.extend(
        ChatMessage(role="assistant", content=issue_to_text(issue, max_body_chars)) for issue in issues
    )
    for instruction in instructions or DEFAULT_INSTRUCTIONS:
        messages.append(ChatMessage(role="user", content=instruction))
    return messages


# ---- basic (no-LLM) backend --------------------------------------------------

class BasicChat:
    """LLM-free baseline: lists the issue headlines it was given.

    Deterministic and offline, handy for trying the pipeline or when no
    model is available.
    """

    def complete(self, messages: Sequence[ChatMessage]) -> str:
        headlines = [m.content.splitlines()[0] for m in messages if m.role == "assistant" and m.content]
        if not headlines:
            return ""
        lines = [f"## Issues ({len(headlines)})", ""]
        lines.extend(f"- {h}" for h in headlines)
        return "\n".join(lines)


# ---- Ollama (local) backend --------------------------------------------------

_LC_MESSAGE = {"system": SystemMessage, "assistant": AIMessage, "user": HumanMessage}


class OllamaChat:
    """Chat backend for a local Ollama server, traced with Langfuse."""

    def __init__(self, model: str = "llama3.2:3b",
                 base_url: str = "http://localhost:11434",
                 num_ctx: int = 8192):
        self.model_name = model
        self.model = ChatOllama(
            model=model,
            base_url=base_url,
            num_ctx=num_ctx,
            temperature=0,
        )

    def complete(self, messages: Sequence[ChatMessage]) -> str:
        lc_messages = [_LC_MESSAGE[m.role](content=m.content) for m in messages]

        langfuse = get_client()
        langfuse_handler = CallbackHandler()

        chain = self.model | StrOutputParser()
        response = chain.invoke(lc_messages, config={"callbacks": [langfuse_handler]})

        langfuse.flush()
        return response.strip()


# ---- OpenAI backend ------------------------------------------------------------

class OpenAIChat:
    """Chat backend for the OpenAI chat-completion API."""

    def __init__(self, model: str = "gpt-3.5-turbo", api_key: str | None = None, client: Any = None):
        self.model_name = model
        if client is None:
            api_key = api_key or os.getenv("OPENAI_API_KEY")
            if not api_key:
                raise ValueError("OPENAI_API_KEY is required for the openai summarizer")
            client = OpenAI(api_key=api_key)
        self.client = client

    def complete(self, messages: Sequence[ChatMessage]) -> str:
        response = self.client.chat.completions.create(
            model=self.model_name,
            messages=[m.model_dump() for m in messages],
        )
        if not response.choices:
            return ""
        return (response.choices[0].message.content or "").strip()


# ---- factory -------------------------------------------------------------------

def get_chat_backend(kind: str, **kwargs) -> Any:
    """Factory that returns a chat backend with a `complete(messages)` method.

    Args:
        kind: "basic", "ollama" or "openai".
        **kwargs: Passed to the backend constructor.

    Raises:
        ValueError: If an unknown backend kind is provided.
    """
    kind = (kind or "basic").lower()
    if kind == "basic":
        return BasicChat()
    if kind == "ollama":
        return OllamaChat(**kwargs)
    if kind == "openai":
        return OpenAIChat(**kwargs)
    raise ValueError(f"Unknown summarizer kind: {kind}")


def backend_from_settings(settings: Settings, kind: str | None = None, model: str | None = None) -> Any:
    """Build the backend chosen by `kind` (or the configured one) from settings."""
    kind = (kind or settings.summarizer_kind or "basic").lower()
    if kind == "ollama":
        return get_chat_backend(kind, model=model or settings.model,
                                base_url=settings.ollama_base_url, num_ctx=settings.num_ctx)
    if kind == "openai":
        return get_chat_backend(kind, model=model or settings.openai_model, api_key=settings.openai_api_key)
    return get_chat_backend(kind)


# ---- composer --------------------------------------------------------------------

def _is_transient(exc: BaseException) -> bool:
    return isinstance(exc, StoreError) and not isinstance(exc, (NotFoundError, LimitExceededError))


class DigestComposer:
    """Builds the prompt, asks the backend and saves the resulting digest."""

    def __init__(self, backend: Any, store: Store, settings: Settings | None = None):
        self.backend = backend
        self.store = store
        self.settings = settings or load_settings()

    def compose(self, project_id: str, issues: Sequence[Issue],
                instructions: Sequence[str] | None = None) -> Digest:
        """Summarize `issues` and store the text as a digest of `project_id`.

        Raises:
            DigestError: If the backend returned no text.
            DigestPersistError: If the text could not be saved.
        """
        messages = build_digest_messages(issues, instructions, self.settings.max_body_chars)
        logger.info(f"Asking AI about {len(issues)} issues ({len(messages)} messages)")
        try:
            content = self.backend.complete(messages)
        except Exception as e:
            logger.error(f"Chat backend failed: {e}")
            raise DigestError(f"The model call failed: {e}") from e
        if not content or not content.strip():
            raise DigestError("The model returned an empty digest")
        return self._persist(project_id, content)

    def _persist(self, project_id: str, content: str) -> Digest:
        digest_id = Digest(project_id=project_id, content=content).id
        logger.info(f"Saving digest {digest_id} for project {project_id}")
        try:
            for attempt in Retrying(
                stop=stop_after_attempt(max(self.settings.persist_attempts, 1)),
                wait=wait_exponential(multiplier=self.settings.backoff_base, max=self.settings.backoff_max),
                retry=retry_if_exception(_is_transient),
                reraise=True,
            ):
                with attempt:
                    return self.store.create_digest(project_id, content, digest_id=digest_id)
        except StoreError as e:
            path = self._spool(digest_id, project_id, content)
            logger.error(f"Could not save digest {digest_id}: {e}")
            raise DigestPersistError(f"Could not save digest {digest_id}: {e}", path) from e
        raise DigestError("Digest was not saved")

    def _spool(self, digest_id: str, project_id: str, content: str) -> Path:
        unsaved = Path(self.settings.cache_dir) / "unsaved"
        unsaved.mkdir(parents=True, exist_ok=True)
        path = unsaved / f"{digest_id}.md"
        path.write_text(f"<!-- project: {project_id} -->\n{content}\n", encoding="utf-8")
        return path


def generate_digest(
    project: Project,
    store: Store,
    *,
    pages: int = 1,
    state: str = "all",
    backend: Any = None,
    settings: Settings | None = None,
) -> Digest:
    """Run the whole pipeline for a stored project: fetch, summarize, save.

    Args:
        project: Project whose repository is summarized.
        store: Where the digest is saved.
        pages: Issue pages to fetch.
        state: "open", "closed" or "all".
        backend: Chat backend; built from settings when omitted.
        settings: Runtime settings; loaded from config/env when omitted.

    Raises:
        DigestError: If no issues could be fetched or the model gave no text.
    """
    settings = settings or load_settings()
    backend = backend or backend_from_settings(settings)

    logger.info(f"Getting issues for {project.name} ({project.repo_url})")
    issues = fetch_issue_pages(project.repo_url, pages=pages, state=state, settings=settings)
    if not issues:
        raise DigestError(f"No issues found for {project.repo_url}")

    return DigestComposer(backend, store, settings).compose(project.id, issues)
