"""CLI entry point for api-mock-engine."""

import asyncio
import json
import logging
from pathlib import Path

import click

from api_mock_engine.config import MockConfig
from api_mock_engine.engine.dispatcher import MockDispatcher, MockRequest
from api_mock_engine.engine.registry import SpecRegistry
from api_mock_engine.engine.storage import JsonFileStorage
from api_mock_engine.engine.store import ResourceStore
from api_mock_engine.errors import ConfigError, RouteNotFound, SpecFormatError
from api_mock_engine.generator.augment import LlmAugmenter
from api_mock_engine.generator.scenarios import generate_scenarios
from api_mock_engine.generator.synthesizer import ValueSynthesizer
from api_mock_engine.parser.base import SpecDocument
from api_mock_engine.parser.openapi import load_document
from api_mock_engine.schema.resolver import resolve


def _load_spec(spec_path: Path) -> SpecDocument:
    try:
        return load_document(spec_path)
    except SpecFormatError as e:
        raise click.ClickException(str(e)) from e


def _load_config() -> MockConfig:
    try:
        return MockConfig.from_env()
    except ConfigError as e:
        raise click.ClickException(str(e)) from e


def _echo_json(data) -> None:
    click.echo(json.dumps(data, indent=2, ensure_ascii=False, default=str))


def _response_schema(doc: SpecDocument, method: str, path: str):
    registry = SpecRegistry([doc])
    try:
        _, route = registry.match(method, path)
    except RouteNotFound as e:
        raise click.ClickException(str(e)) from e
    raw = route.operation.success_schema()
    if raw is None:
        raise click.ClickException(f"{route.operation.label} declares no success response schema")
    return resolve(raw, doc.raw)


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Log engine diagnostics to stderr.")
def main(verbose: bool):
    """API Mock Engine: stateful fake backends generated from OpenAPI documents."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@main.command()
@click.argument("spec_path", type=click.Path(exists=True, path_type=Path))
def routes(spec_path: Path):
    """List the operations a document declares."""
    doc = _load_spec(spec_path)
    operations = doc.operations()
    click.echo(f"{doc.name}: {len(operations)} operations")
    for op in operations:
        summary = f"  {op.summary}" if op.summary else ""
        click.echo(f"  {op.method:<7} {op.path}{summary}")


@main.command()
@click.argument("spec_path", type=click.Path(exists=True, path_type=Path))
@click.argument("method")
@click.argument("path")
@click.option("--seed", type=int, default=None, help="Seed for reproducible values.")
def sample(spec_path: Path, method: str, path: str, seed: int | None):
    """Synthesize one response body for METHOD PATH without touching state."""
    doc = _load_spec(spec_path)
    node = _response_schema(doc, method, path)
    _echo_json(ValueSynthesizer(seed=seed).synthesize(node))


@main.command()
@click.argument("spec_path", type=click.Path(exists=True, path_type=Path))
@click.argument("method")
@click.argument("path")
@click.option("--count", default=5, show_default=True, help="Number of scenarios.")
@click.option("--seed", type=int, default=None, help="Seed for reproducible values.")
def scenarios(spec_path: Path, method: str, path: str, count: int, seed: int | None):
    """Generate realistic, edge-case and minimal scenarios for a response."""
    doc = _load_spec(spec_path)
    node = _response_schema(doc, method, path)
    result = generate_scenarios(node, ValueSynthesizer(seed=seed), count=count)
    _echo_json([s.model_dump() for s in result])


@main.command()
@click.argument("spec_path", type=click.Path(exists=True, path_type=Path))
@click.argument("method")
@click.argument("path")
@click.option("-d", "--data", default=None, help="JSON request body.")
@click.option("-q", "--query", multiple=True, help="Query parameter as key=value (repeatable).")
@click.option("--state", type=click.Path(path_type=Path), default=None, help="JSON file that keeps mock state between calls.")
@click.option("--augment", is_flag=True, help="Ask an LLM for the synthesized values.")
@click.option("--model", default=None, help="LLM model to use with --augment.")
@click.option("--seed", type=int, default=None, help="Seed for reproducible values.")
def call(spec_path: Path, method: str, path: str, data: str | None, query: tuple[str, ...],
         state: Path | None, augment: bool, model: str | None, seed: int | None):
    """Dispatch one request against the mock and print the response."""
    doc = _load_spec(spec_path)
    config = _load_config()
    if seed is not None:
        config.seed = seed
    state = state or config.state_file

    try:
        body = json.loads(data) if data else None
    except json.JSONDecodeError as e:
        raise click.BadParameter(f"not valid JSON: {e}", param_hint="--data") from e

    params = {}
    for item in query:
        key, sep, value = item.partition("=")
        if not sep:
            raise click.BadParameter(f"expected key=value, got {item!r}", param_hint="--query")
        params[key] = value

    augmenter = None
    if augment:
        augmenter = LlmAugmenter(model=model or config.llm_model, timeout=config.augment_timeout)

    async def _run():
        store = ResourceStore.open(JsonFileStorage(state)) if state else ResourceStore()
        dispatcher = MockDispatcher(SpecRegistry([doc]), store, augmenter=augmenter, config=config)
        response = await dispatcher.dispatch(
            MockRequest(method=method, path=path, query=params, body=body),
            strategy="augmented" if augment else None,
        )
        await store.flush()
        return response, store.degraded

    response, degraded = asyncio.run(_run())
    click.echo(f"Status: {response.status_code}")
    if response.body is not None:
        _echo_json(response.body)
    if degraded:
        click.echo("Warning: state could not be saved; changes kept in memory only.", err=True)
