"""Repository URL parsing.

Turns a Git hosting URL (HTTPS or SSH) into a `ParsedRepoRef`. Parsing is
purely textual: hosts are recognised by substring search rather than strict
URL parsing, and nothing here touches the network.

Unrecognised input never raises. It yields the UNKNOWN sentinel with empty
`user` and `repo`; use `require_known` where an exception is wanted.

Example:
    ```python
    from issueradar.core.url_parser import parse_repo_url

    parse_repo_url("git@github.com:pmndrs/jotai.git")
    # ParsedRepoRef(user='pmndrs', repo='jotai', provider=<Provider.GITHUB: 'GITHUB'>)

    parse_repo_url("https://nextjs.org/docs/testing").provider
    # <Provider.UNKNOWN: 'UNKNOWN'>
    ```
"""
from __future__ import annotations
from typing import Dict
import re

from .models import ParsedRepoRef, Provider

# host substring -> provider
KNOWN_HOSTS: Dict[str, Provider] = {
    "github.com": Provider.GITHUB,
    "gitlab.com": Provider.GITLAB,
}

# host/user/repo
MAX_SEGMENTS = 3

_SCHEME_RE = re.compile(r"^https?://", re.I)
_SSH_RE = re.compile(r"^git@([^:/]+):")

UNKNOWN_REF = ParsedRepoRef()


class UnsupportedRepoUrlError(ValueError):
    """Raised by `require_known` for URLs that are not GitHub or GitLab repos."""


def _detect_provider(host: str) -> Provider:
    host = host.lower()
    for needle, provider in KNOWN_HOSTS.items():
        if needle in host:
            return provider
    return Provider.UNKNOWN


def parse_repo_url(raw: str | None = "") -> ParsedRepoRef:
    """Parse a git URL into user, repo and provider.

    Accepts HTTPS (`https://github.com/user/repo[.git]`), scheme-less
    (`github.com/user/repo`) and SSH (`git@github.com:user/repo.git`) forms.

    Args:
        raw: URL as typed by the user; surrounding whitespace is ignored.

    Returns:
        The parsed reference, or the UNKNOWN sentinel when the host is not
        recognised or the path is deeper than `host/user/repo`.
    """
    link = (raw or "").strip().rstrip("/")
    if not link:
        return UNKNOWN_REF

    cleaned = _SCHEME_RE.sub("", link)
    if cleaned.endswith(".git"):
        cleaned = cleaned[: -len(".git")]
    # git@host:user/repo -> host/user/repo
    cleaned = _SSH_RE.sub(r"\1/", cleaned)

    segments = [s for s in cleaned.split("/") if s]
    if len(segments) > MAX_SEGMENTS or len(segments) < 3:
        return UNKNOWN_REF

    provider = _detect_provider(segments[0])
    if provider is Provider.UNKNOWN:
        return UNKNOWN_REF

    return ParsedRepoRef(user=segments[-2], repo=segments[-1], provider=provider)


def require_known(ref: ParsedRepoRef | str) -> ParsedRepoRef:
    """Return `ref` (parsing it first if given a string) or raise if UNKNOWN.

    Raises:
        UnsupportedRepoUrlError: If the URL is not a GitHub or GitLab repo URL.
    """
    parsed = parse_repo_url(ref) if isinstance(ref, str) else ref
    if not parsed.is_known:
        raise UnsupportedRepoUrlError("Currently accepts only GitHub or GitLab repo URL")
    return parsed
