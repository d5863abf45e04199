"""Command-line interface for SpecGraph."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
import time
from pathlib import Path

import click

from specgraph import __version__
from specgraph.config import (
    ProjectConfig,
    apply_env_overrides,
    find_project_root,
    load_config,
    save_config,
    set_config_value,
    validate_config,
)
from specgraph.exceptions import SpecGraphError
from specgraph.ui.console import Console

console = Console()


def _setup_logging(verbose: bool) -> None:
    from rich.logging import RichHandler

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(name)s: %(message)s",
        handlers=[RichHandler(console=console.console, show_path=False)],
        force=True,
    )


def _get_project_root(path: str | None = None) -> Path:
    """Find the project root or error."""
    if path:
        root = Path(path).resolve()
        if not root.exists():
            console.error(f"Path does not exist: {path}")
            sys.exit(1)
        return root

    root = find_project_root()
    if root is None:
        console.error(
            "No SpecGraph project found. Run 'specgraph init' first, "
            "or specify a path with --path."
        )
        sys.exit(1)
    return root


def _load_project_config(path: str | None) -> ProjectConfig:
    """Project config if one exists, else defaults; env overrides applied."""
    root = Path(path).resolve() if path else find_project_root()
    config = load_config(root) if root else ProjectConfig()
    return apply_env_overrides(config)


def _run(coro):
    """Run a coroutine, turning SpecGraph errors into exit code 1."""
    try:
        return asyncio.run(coro)
    except SpecGraphError as e:
        console.error(str(e))
        sys.exit(1)


def _read_text(path: str) -> str:
    return Path(path).read_text(encoding="utf-8")


@click.group()
@click.version_option(version=__version__, prog_name="specgraph")
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging.")
def main(verbose: bool):
    """SpecGraph - map code changes to the E2E specs they affect."""
    _setup_logging(verbose)


@main.command()
@click.option("--path", "-p", default=None, help="Path to the project root.")
@click.option("--uri", default=None, help="Neo4j bolt URI.")
@click.option("--provider", default=None, help="Embedding provider (openai, ollama, local).")
@click.option("--model", default=None, help="Embedding model name.")
def init(path: str | None, uri: str | None, provider: str | None, model: str | None):
    """Write a default .specgraph/config.json for a repository."""
    root = Path(path or ".").resolve()
    if not root.exists():
        console.error(f"Path does not exist: {root}")
        sys.exit(1)

    console.banner()
    config = load_config(root)
    config.name = root.name
    if uri:
        config.neo4j.uri = uri
    if provider:
        config.embedding.provider = provider
    if model:
        config.embedding.model = model

    save_config(root, config)
    console.success(f"Configuration saved to {root / '.specgraph'}")


@main.command("config")
@click.argument("action", type=click.Choice(["set", "get", "show"]))
@click.argument("key", required=False)
@click.argument("value", required=False)
@click.option("--path", "-p", default=None, help="Path to the project root.")
def config_cmd(action: str, key: str | None, value: str | None, path: str | None):
    """Manage SpecGraph configuration."""
    root = _get_project_root(path)
    config = load_config(root)

    if action == "show":
        console.console.print_json(json.dumps(config.model_dump(), indent=2))
    elif action == "get":
        if not key:
            console.error("Usage: specgraph config get <key>")
            sys.exit(1)
        data = config.model_dump()
        for part in key.split("."):
            if isinstance(data, dict) and part in data:
                data = data[part]
            else:
                console.error(f"Unknown key: {key}")
                sys.exit(1)
        console.console.print(f"{key} = {data}")
    elif action == "set":
        if not key or value is None:
            console.error("Usage: specgraph config set <key> <value>")
            sys.exit(1)
        # JSON for non-string values
        try:
            parsed_value = json.loads(value)
        except json.JSONDecodeError:
            parsed_value = value
        try:
            config = set_config_value(config, key, parsed_value)
        except KeyError:
            console.error(f"Unknown config key: {key}")
            sys.exit(1)
        save_config(root, config)
        console.success(f"Set {key} = {parsed_value}")


@main.command("init-schema")
@click.option("--path", "-p", default=None, help="Path to the project root.")
def init_schema(path: str | None):
    """Create the graph's uniqueness constraints (idempotent)."""
    from specgraph.graph.neo4j_store import create_driver
    from specgraph.graph.schema import ensure_schema

    config = _load_project_config(path)

    async def run() -> list[str]:
        validate_config(config)
        driver = create_driver(config.neo4j)
        try:
            return await ensure_schema(driver, database=config.neo4j.database)
        finally:
            await driver.close()

    statements = _run(run())
    console.success(f"Ensured {len(statements)} constraints")


@main.command()
@click.option("--diff", "diff_path", required=True, type=click.Path(exists=True, dir_okay=False),
              help="Unified diff file.")
@click.option("--specs", "specs_dir", required=True, help="Directory holding the E2E specs.")
@click.option("--top-k", "-k", default=None, type=int, help="Specs kept per changed chunk.")
@click.option("--json", "as_json", is_flag=True, help="Print matches as JSON.")
@click.option("--path", "-p", default=None, help="Path to the project root.")
def match(diff_path: str, specs_dir: str, top_k: int | None, as_json: bool, path: str | None):
    """Rank the specs most likely affected by each changed file of a diff."""
    from specgraph.chunking import chunk_diff, chunk_specs, read_spec_files
    from specgraph.embeddings import create_embedder
    from specgraph.search.hybrid import HybridMatcher

    config = _load_project_config(path)

    async def run():
        validate_config(config, require_graph=False)
        code_chunks = chunk_diff(_read_text(diff_path))
        spec_chunks = chunk_specs(read_spec_files(Path(specs_dir), config.spec_patterns))
        matcher = HybridMatcher(
            create_embedder(config.embedding),
            top_k=top_k or config.retrieval.top_k,
            rrf_k=config.retrieval.rrf_k,
            name_boost=config.retrieval.name_boost,
            fuzziness=config.retrieval.fuzziness,
        )
        with console.status(
            f"Embedding {len(code_chunks)} code and {len(spec_chunks)} spec chunks..."
        ):
            return await matcher.match_chunks_detailed(code_chunks, spec_chunks)

    matches = _run(run())
    if as_json:
        click.echo(json.dumps([m.model_dump(mode="json") for m in matches], indent=2))
    else:
        console.show_matches(matches)


@main.command()
@click.option("--diff", "diff_path", required=True, type=click.Path(exists=True, dir_okay=False),
              help="Unified diff file.")
@click.option("--specs", "specs_dir", required=True, help="Directory holding the E2E specs.")
@click.option("--pr", "pr_number", required=True, type=int, help="Pull request number.")
@click.option("--title", default="", help="Pull request title.")
@click.option("--author", default="", help="Pull request author.")
@click.option("--branch", default="", help="Head branch.")
@click.option("--commit", "commit_sha", default="", help="Head commit SHA.")
@click.option("--base", "base_sha", default="", help="Base commit SHA.")
@click.option("--verdicts", "verdicts_path", default=None,
              type=click.Path(exists=True, dir_okay=False),
              help="Upstream verdicts (markdown report or JSON array).")
@click.option("--org", "org_name", default=None, help="Organization (defaults to config).")
@click.option("--repo", "repo_full_name", default=None, help="owner/name (defaults to config).")
@click.option("--model", "llm_model", default="", help="Model that produced the verdicts.")
@click.option("--temperature", default=0.0, type=float, help="Sampling temperature used upstream.")
@click.option("--llm-duration-ms", default=0, type=int, help="Upstream generation time.")
@click.option("--dry-run", is_flag=True, help="Write to an in-memory graph instead of Neo4j.")
@click.option("--path", "-p", default=None, help="Path to the project root.")
def persist(
    diff_path: str,
    specs_dir: str,
    pr_number: int,
    title: str,
    author: str,
    branch: str,
    commit_sha: str,
    base_sha: str,
    verdicts_path: str | None,
    org_name: str | None,
    repo_full_name: str | None,
    llm_model: str,
    temperature: float,
    llm_duration_ms: int,
    dry_run: bool,
    path: str | None,
):
    """Persist one analysis run (chunks, matches, verdicts) into the graph."""
    from specgraph.chunking import chunk_diff, read_spec_files
    from specgraph.embeddings import create_embedder
    from specgraph.graph import (
        MemoryGraphRepository,
        create_graph_repository,
        persist_analysis_run,
    )
    from specgraph.models import PersistOptions, PRMetadata
    from specgraph.predictions import load_verdicts

    started_at = time.time()
    config = _load_project_config(path)

    async def run():
        validate_config(config, require_graph=not dry_run)
        raw_markdown = _read_text(verdicts_path) if verdicts_path else ""
        options = PersistOptions(
            org_name=org_name or config.persist.org_name,
            repo_full_name=repo_full_name or config.persist.repo_full_name,
            pr_metadata=PRMetadata(
                pr_number=pr_number,
                title=title,
                author=author,
                branch=branch,
                commit_sha=commit_sha,
                base_sha=base_sha,
            ),
            code_chunks=chunk_diff(_read_text(diff_path)),
            spec_files=read_spec_files(Path(specs_dir), config.spec_patterns),
            raw_markdown=raw_markdown,
            predictions=load_verdicts(raw_markdown) if raw_markdown else [],
            model=llm_model,
            temperature=temperature,
            analysis_started_at=started_at,
            llm_duration_ms=llm_duration_ms,
        )
        embedder = create_embedder(config.embedding)
        async with create_graph_repository(config.neo4j, dry_run=dry_run) as repository:
            await repository.verify_connectivity()
            with console.status("Persisting analysis run..."):
                result = await persist_analysis_run(
                    repository,
                    options,
                    embedder,
                    top_k=config.retrieval.top_k,
                    max_concurrency=config.persist.max_concurrency,
                    rrf_k=config.retrieval.rrf_k,
                    name_boost=config.retrieval.name_boost,
                    fuzziness=config.retrieval.fuzziness,
                )
            stats = (
                repository.get_stats()
                if isinstance(repository, MemoryGraphRepository)
                else None
            )
        return result, stats

    result, stats = _run(run())
    console.show_persist_result(result)
    if stats is not None:
        console.show_stats(stats)


@main.command("parse-verdicts")
@click.argument("file", type=click.Path(exists=True, dir_okay=False))
@click.option("--json", "as_json", is_flag=True, help="Print verdicts as JSON.")
def parse_verdicts_cmd(file: str, as_json: bool):
    """Show the per-test verdicts found in a markdown report."""
    from specgraph.predictions import load_verdicts

    try:
        verdicts = load_verdicts(_read_text(file))
    except SpecGraphError as e:
        console.error(str(e))
        sys.exit(1)

    if as_json:
        click.echo(json.dumps([v.model_dump(mode="json") for v in verdicts], indent=2))
    else:
        console.show_verdicts(verdicts)


if __name__ == "__main__":
    main()
