#!/usr/bin/env python3
"""
Command line interface for vcblobstore.

Commands print single-line JSON by default so their output can be piped;
--pretty switches listing commands to rich tables.
"""

import functools
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, Optional

import click

from . import __version__
from .backends import BlobStore, make_blob_store
from .backends.factory import BACKENDS
from .config import get_config_path, load_config, setup_logging
from .context import OperationContext
from .domain import BlobInfo
from .errors import BlobStoreError
from .exit_codes import get_exit_code_for_exception
from .render import render_blob_keys, render_commit_metadata

logger = logging.getLogger(__name__)


class CliState:
    """Configuration shared by the subcommands of one invocation."""

    def __init__(self, config: Dict[str, Any], timeout: Optional[float] = None):
        self.config = config
        self.timeout = timeout
        self._store: Optional[BlobStore] = None

    def operation_context(self) -> OperationContext:
        return OperationContext(timeout=self.timeout)

    @property
    def store(self) -> BlobStore:
        """The configured backend, created on first use."""
        if self._store is None:
            self._store = make_blob_store(self.config, ctx=self.operation_context())
        return self._store


def emit(data: Dict[str, Any]) -> None:
    print(json.dumps(data, ensure_ascii=False))


def handle_errors(fn):
    """Report BlobStoreError as JSON on stderr and exit with its mapped code."""
    @functools.wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except BlobStoreError as e:
            logger.debug(f"{fn.__name__} failed", exc_info=True)
            click.echo(json.dumps({"error": str(e), "type": type(e).__name__}), err=True)
            sys.exit(get_exit_code_for_exception(e))
    return wrapper


@click.group()
@click.version_option(version=__version__, prog_name="vcblobstore")
@click.option('--backend', type=click.Choice(BACKENDS), help='Backend to use (overrides config)')
@click.option('--location', type=click.Path(path_type=Path), help='Local repository location (overrides config)')
@click.option('--timeout', type=float, help='Deadline for the operation in seconds')
@click.option('--debug', is_flag=True, help='Enable debug logging')
@click.pass_context
@handle_errors
def cli(ctx, backend, location, timeout, debug):
    """vcblobstore - Versioned blob store on git or GitLab.

    Every change to a blob is recorded as one commit, so each state of
    the store has a version id and provenance metadata.
    """
    config = load_config()
    if backend:
        config["backend"] = backend
    if location:
        config["local"]["location"] = str(location)
    if debug:
        config["logging"]["level"] = "DEBUG"
    setup_logging(config)
    ctx.obj = CliState(config, timeout=timeout)


# Repository lifecycle

@cli.command('init')
@click.pass_obj
@handle_errors
def init_cmd(state: CliState):
    """Create the repository if it does not exist."""
    store = state.store
    store.create_repository(ctx=state.operation_context())
    emit({"status": "ready", "repository": str(store)})


@cli.command('reset')
@click.confirmation_option(prompt='Delete all blobs and their history?')
@click.pass_obj
@handle_errors
def reset_cmd(state: CliState):
    """Delete and re-create the repository."""
    store = state.store
    store.reset_repository(ctx=state.operation_context())
    emit({"status": "reset", "repository": str(store)})


@cli.command('destroy')
@click.confirmation_option(prompt='Delete the repository with all blobs and history?')
@click.pass_obj
@handle_errors
def destroy_cmd(state: CliState):
    """Delete the repository."""
    store = state.store
    store.delete_repository(ctx=state.operation_context())
    emit({"status": "deleted", "repository": str(store)})


# Blob mutations

@cli.command('add')
@click.argument('key')
@click.argument('file', type=click.File('rb'))
@click.option('--user', '-u', required=True, help='User recorded as the author of the change')
@click.pass_obj
@handle_errors
def add_cmd(state: CliState, key, file, user):
    """Store FILE under KEY ('-' reads stdin)."""
    blob = BlobInfo(key=key, content=file.read(), modified_by=user)
    op = state.operation_context()
    state.store.add_blob(blob, ctx=op)
    result = blob.to_dict()
    result["version"] = state.store.get_version_for(key, ctx=op)
    emit(result)


@cli.command('copy')
@click.argument('source')
@click.argument('destination')
@click.option('--user', '-u', required=True, help='User recorded as the author of the change')
@click.pass_obj
@handle_errors
def copy_cmd(state: CliState, source, destination, user):
    """Copy the blob SOURCE to DESTINATION."""
    op = state.operation_context()
    state.store.copy_blob(source, destination, user, ctx=op)
    emit({
        "source": source,
        "destination": destination,
        "version": state.store.get_version_for(destination, ctx=op),
    })


@cli.command('rm')
@click.argument('key')
@click.option('--user', '-u', required=True, help='User recorded as the author of the change')
@click.pass_obj
@handle_errors
def rm_cmd(state: CliState, key, user):
    """Delete the blob KEY."""
    state.store.delete_blob(key, user, ctx=state.operation_context())
    emit({"key": key, "status": "deleted"})


# Queries

@cli.command('get')
@click.argument('key')
@click.option('--output', '-o', type=click.Path(dir_okay=False, path_type=Path),
              help='Write the content to a file instead of stdout')
@click.pass_obj
@handle_errors
def get_cmd(state: CliState, key, output):
    """Print the content of the blob KEY."""
    content = state.store.get_blob(key, ctx=state.operation_context())
    if output:
        output.write_bytes(content)
        emit({"key": key, "size": len(content), "output": str(output)})
        return
    stream = click.get_binary_stream('stdout')
    stream.write(content)
    stream.flush()


@cli.command('ls')
@click.option('--pretty', is_flag=True, help='Display as a table instead of JSONL')
@click.pass_obj
@handle_errors
def ls_cmd(state: CliState, pretty):
    """List the keys of all stored blobs."""
    keys = state.store.list_blob_keys(ctx=state.operation_context())
    if pretty:
        render_blob_keys(keys, title=str(state.store))
        return
    for key in sorted(keys):
        emit({"key": key})


@cli.command('state')
@click.pass_obj
@handle_errors
def state_cmd(state: CliState):
    """Print the version id of the current state."""
    emit({"state_id": state.store.get_state_id(ctx=state.operation_context())})


@cli.command('version')
@click.argument('key')
@click.pass_obj
@handle_errors
def version_cmd(state: CliState, key):
    """Print the id of the last version that touched KEY ("" if none)."""
    emit({"key": key, "version": state.store.get_version_for(key, ctx=state.operation_context())})


@cli.command('meta')
@click.argument('token')
@click.option('--pretty', is_flag=True, help='Display as a table instead of JSON')
@click.pass_obj
@handle_errors
def meta_cmd(state: CliState, token, pretty):
    """Print author, dates and message of the version TOKEN."""
    metadata = state.store.get_version_metadata(token, ctx=state.operation_context())
    if pretty:
        render_commit_metadata(metadata, token)
        return
    emit(metadata.to_dict())


@cli.command('status')
@click.pass_obj
@handle_errors
def status_cmd(state: CliState):
    """Report whether the stored state matches the last commit."""
    emit({"clean": state.store.check_status(ctx=state.operation_context()), "repository": str(state.store)})


# Configuration

@cli.group('config')
def config_cmd():
    """Configuration management commands."""
    pass


@config_cmd.command('show')
@click.option('--pretty', is_flag=True, help='Display as formatted JSON instead of single-line JSON')
@click.option('--show-secrets', is_flag=True, help='Include the GitLab access token')
@click.pass_obj
def show_config(state: CliState, pretty, show_secrets):
    """Show the current configuration with all merges applied.

    By default, outputs single-line JSON (JSONL format).
    Use --pretty for human-readable formatted output.
    """
    config = json.loads(json.dumps(state.config))
    if config.get("gitlab", {}).get("access_token") and not show_secrets:
        config["gitlab"]["access_token"] = "***"

    if pretty:
        print(json.dumps(config, indent=2, ensure_ascii=False))
    else:
        print(json.dumps(config, ensure_ascii=False))


@config_cmd.command('path')
def config_path():
    """Show the config file path being used."""
    emit({"config_path": str(get_config_path())})


def main():
    cli()


if __name__ == "__main__":
    main()
