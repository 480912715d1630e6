"""Command-line interface for issueradar.

Parses command-line arguments and drives the core: repository URL parsing,
issue retrieval, project bookkeeping and digest generation.

Usage:
    ```bash
    # What does IssueRadar make of a URL?
    issueradar parse git@github.com:pmndrs/jotai.git

    # First three pages of open issues as Markdown
    issueradar issues https://github.com/pmndrs/jotai --pages 3 --state open --format md

    # Track a repository and summarize its issues
    issueradar project add https://github.com/pmndrs/jotai
    issueradar digest run <project-id> --pages 2 --summarizer ollama
    issueradar digest show <project-id>
    ```

Configuration:
    Command-line arguments override environment variables, which override
    config.toml (see `issueradar.core.config`).
"""
from __future__ import annotations
from typing import Any, List, Optional
import argparse
import json
import logging
import os
import sys

from ..core.config import Settings, load_settings
from ..core.digest import DigestError, backend_from_settings, generate_digest
from ..core.issues import ISSUE_STATES, IssueFetchError, fetch_issue_pages, get_issues
from ..core.models import Digest, Issue, Project
from ..core.store import Store, StoreError, get_store
from ..core.url_parser import UnsupportedRepoUrlError, parse_repo_url, require_known

logger = logging.getLogger("issueradar")


def to_markdown(issues: List[Issue]) -> str:
    """Convert a list of issues to a Markdown bullet list."""
    lines = []
    for it in issues:
        labels = f" _{', '.join(it.label_names)}_" if it.label_names else ""
        lines.append(f"- [#{it.number} {it.title}]({it.html_url}) ({it.state}){labels}")
    return "\n".join(lines)


def _project_row(p: Project) -> str:
    return f"{p.id}  {p.name}  {p.repo_url}"


def _digest_row(d: Digest) -> str:
    flag = "published" if d.published else "draft"
    return f"{d.id}  {d.created_at:%Y-%m-%d %H:%M}  {flag}"


def _emit(payload: str, out: Optional[str]) -> None:
    if out:
        os.makedirs(os.path.dirname(out) or ".", exist_ok=True)
        with open(out, "w", encoding="utf-8") as f:
            f.write(payload)
        print(f"wrote {out}")
    else:
        print(payload)


def _dump(data: Any) -> str:
    return json.dumps(data, ensure_ascii=False, indent=2, default=str)


# ---- commands ------------------------------------------------------------------

def cmd_parse(args: argparse.Namespace, s: Settings) -> int:
    ref = parse_repo_url(args.url)
    if args.format == "json":
        _emit(_dump(ref.to_dict()), args.out)
    else:
        _emit(ref.full_name or ref.provider.value, args.out)
    return 0 if ref.is_known else 1


def cmd_issues(args: argparse.Namespace, s: Settings) -> int:
    require_known(args.url)
    if args.page is not None:
        issues = get_issues(args.url, args.page, args.state, settings=s)
        if issues is None:
            logger.error("Could not fetch issues, see the log above")
            return 1
        if not args.include_pulls:
            issues = [i for i in issues if not i.is_pull_request]
    else:
        issues = fetch_issue_pages(args.url, pages=args.pages, state=args.state,
                                   include_pulls=args.include_pulls, strict=True, settings=s)

    if args.format == "json":
        payload = _dump([i.model_dump(mode="json") for i in issues])
    else:
        payload = to_markdown(issues)
    _emit(payload, args.out)
    return 0


def cmd_project(args: argparse.Namespace, s: Settings, store: Store) -> int:
    if args.action == "add":
        ref = require_known(args.url)
        project = store.create_project(args.name or ref.full_name, args.url, args.description or "")
        _emit(_dump(project.model_dump(mode="json")), args.out)
    elif args.action == "list":
        _emit("\n".join(_project_row(p) for p in store.list_projects()), args.out)
    elif args.action == "show":
        _emit(_dump(store.get_project(args.id).model_dump(mode="json")), args.out)
    elif args.action == "edit":
        project = store.update_project(args.id, name=args.name, repo_url=args.url, description=args.description)
        _emit(_dump(project.model_dump(mode="json")), args.out)
    elif args.action == "rm":
        store.delete_project(args.id)
        print(f"deleted project {args.id}")
    return 0


def cmd_digest(args: argparse.Namespace, s: Settings, store: Store) -> int:
    if args.action == "run":
        project = store.get_project(args.project_id)
        backend = backend_from_settings(s, kind=args.summarizer, model=args.model)
        digest = generate_digest(project, store, pages=args.pages, state=args.state, backend=backend, settings=s)
        _emit(digest.content, args.out)
    elif args.action == "show":
        digest = store.get_digest(args.id) if args.id else store.latest_digest(args.project_id)
        if digest is None:
            print("No digest yet. Run `issueradar digest run` to create one.")
            return 1
        _emit(digest.content, args.out)
    elif args.action == "list":
        _emit("\n".join(_digest_row(d) for d in store.list_digests(args.project_id)), args.out)
    elif args.action == "publish":
        digest = store.update_digest(args.id, published=not args.unpublish)
        print(f"{digest.id} {'published' if digest.published else 'unpublished'}")
    elif args.action == "rm":
        store.delete_digest(args.id)
        print(f"deleted digest {args.id}")
    return 0


# ---- parser --------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="issueradar", description="Summarize a repository's issues into digests.")
    p.add_argument("--config", help="Path to config.toml (defaults to ./config.toml if present)")
    p.add_argument("--store", choices=["local", "api"], help="Where projects and digests are kept")
    p.add_argument("--out", help="Write to file instead of stdout")
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = p.add_subparsers(dest="command", required=True)

    sp = sub.add_parser("parse", help="Parse a repository URL")
    sp.add_argument("url")
    sp.add_argument("--format", choices=["json", "text"], default="json", help="Output format")

    ip = sub.add_parser("issues", help="List a repository's issues")
    ip.add_argument("url")
    ip.add_argument("--page", type=int, help="Fetch only this page")
    ip.add_argument("--pages", type=int, default=1, help="Fetch pages 1..N (default: 1)")
    ip.add_argument("--state", choices=ISSUE_STATES, default="all")
    ip.add_argument("--include-pulls", action="store_true", help="Keep pull requests")
    ip.add_argument("--format", choices=["json", "md"], default="json", help="Output format")

    pp = sub.add_parser("project", help="Manage projects")
    psub = pp.add_subparsers(dest="action", required=True)
    add = psub.add_parser("add", help="Track a repository")
    add.add_argument("url")
    add.add_argument("--name", help="Project name (default: user/repo)")
    add.add_argument("--description")
    psub.add_parser("list", help="List projects")
    for name in ("show", "rm"):
        psub.add_parser(name).add_argument("id")
    edit = psub.add_parser("edit", help="Change a project")
    edit.add_argument("id")
    edit.add_argument("--name")
    edit.add_argument("--url")
    edit.add_argument("--description")

    dp = sub.add_parser("digest", help="Generate and manage digests")
    dsub = dp.add_subparsers(dest="action", required=True)
    run = dsub.add_parser("run", help="Fetch issues and generate a digest")
    run.add_argument("project_id")
    run.add_argument("--pages", type=int, default=1)
    run.add_argument("--state", choices=ISSUE_STATES, default="all")
    run.add_argument("--summarizer", choices=["basic", "ollama", "openai"],
                     help="Summary engine. 'basic' (no LLM), 'ollama' (local) or 'openai'.")
    run.add_argument("--model", help="Model name for ollama/openai. Ignored for basic.")
    show = dsub.add_parser("show", help="Print the latest (or a given) digest")
    show.add_argument("project_id")
    show.add_argument("--id", help="Digest id instead of the latest one")
    dsub.add_parser("list", help="List a project's digests").add_argument("project_id")
    pub = dsub.add_parser("publish", help="Publish a digest")
    pub.add_argument("id")
    pub.add_argument("--unpublish", action="store_true")
    dsub.add_parser("rm", help="Delete a digest").add_argument("id")
    return p


def main(argv: Optional[List[str]] = None) -> int:
    """Entry point for the CLI.

    Returns:
        Process exit status: 0 on success, 1 on any handled failure.
    """
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    # Load config.toml (if present) + env defaults
    s = load_settings(args.config or "config.toml")
    if args.store:
        s.store_kind = args.store

    try:
        if args.command == "parse":
            return cmd_parse(args, s)
        if args.command == "issues":
            return cmd_issues(args, s)
        store = get_store(s)
        try:
            if args.command == "project":
                return cmd_project(args, s, store)
            return cmd_digest(args, s, store)
        finally:
            store.close()
    except (UnsupportedRepoUrlError, IssueFetchError, StoreError, DigestError, ValueError) as e:
        logger.error(str(e))
        return 1


if __name__ == "__main__":
    sys.exit(main())
