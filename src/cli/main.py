# Copyright 2023 - Compute Heavy Industries Incorporated
# This work is released, distributed, and licensed under AGPLv3.

import json
import click
import logging
import pathlib

from defercommit.core import exceptions
from defercommit.core import integrity
from defercommit.core import blocks
from defercommit.core import edits
from defercommit.impl import fs

logger = logging.getLogger(__name__)

LOG_LEVELS = [logging.WARNING, logging.INFO, logging.DEBUG]

@click.group()
@click.option("-v", "--verbose", count=True,
    help="Increase log verbosity (-v info, -vv debug).")
@click.option("--block-size", type=click.IntRange(min=1),
    default=blocks.BLOCK_SIZE, show_default=True,
    envvar="DEFERCOMMIT_BLOCK_SIZE",
    help="Size of the in-memory blocks edits are buffered in.")
@click.pass_context
def cli(ctx, verbose, block_size):
    logging.basicConfig(
        level=LOG_LEVELS[min(verbose, len(LOG_LEVELS) - 1)],
        format="%(levelname)s %(name)s: %(message)s")

    ctx.ensure_object(dict)
    ctx.obj["block_size"] = block_size

def finish(deferred, path: pathlib.Path, dry_run: bool):
    if dry_run:
        click.echo(f"dry run, {deferred.pending} blocks not committed")
        return

    blocks_ = deferred.pending
    deferred.commit()
    logger.info("committed %d blocks to %s", blocks_, path)
    click.echo(f"committed {blocks_} blocks, length {deferred.length}")

@cli.command("write")
@click.argument("path", type=click.Path(dir_okay=False, path_type=pathlib.Path))
@click.argument("offset", type=click.IntRange(min=0))
@click.argument("data")
@click.option("--hex", "hex_", is_flag=True,
    help="DATA is hex encoded instead of UTF-8 text.")
@click.option("--create", is_flag=True, help="Create PATH if missing.")
@click.option("--dry-run", is_flag=True, help="Apply but do not commit.")
@click.pass_context
def write(ctx, path, offset, data, hex_, create, dry_run):
    """Write DATA at OFFSET of PATH."""
    try:
        buf = bytes.fromhex(data) if hex_ else data.encode()
    except ValueError as error:
        raise click.BadParameter("invalid hex", param_hint="DATA") from error

    edit = edits.WriteEdit(offset, buf)
    try:
        with fs.open_path(path, create=create,
            block_size=ctx.obj["block_size"]) as deferred:
            edit.apply(deferred)
            finish(deferred, path, dry_run)
    except (OSError, ValueError, exceptions.InvalidOperationError) as error:
        raise click.ClickException(str(error)) from error

@cli.command("resize")
@click.argument("path", type=click.Path(
    exists=True, dir_okay=False, path_type=pathlib.Path))
@click.argument("length", type=click.IntRange(min=0))
@click.option("--dry-run", is_flag=True, help="Apply but do not commit.")
@click.pass_context
def resize(ctx, path, length, dry_run):
    """Enlarge PATH to LENGTH bytes, new bytes are zero."""
    try:
        with fs.open_path(path,
            block_size=ctx.obj["block_size"]) as deferred:
            edits.ResizeEdit(length).apply(deferred)
            finish(deferred, path, dry_run)
    except (OSError, ValueError, exceptions.InvalidOperationError) as error:
        raise click.ClickException(str(error)) from error

@cli.command("apply")
@click.argument("path", type=click.Path(dir_okay=False, path_type=pathlib.Path))
@click.argument("script", type=click.File("r"))
@click.option("--trust", multiple=True,
    help="Hex verify key allowed to sign scripts. Implies a signature check.")
@click.option("--require-signature", is_flag=True,
    help="Reject unsigned or tampered scripts.")
@click.option("--expect-sha256",
    help="Only commit if the edited content has this SHA256.")
@click.option("--create", is_flag=True, help="Create PATH if missing.")
@click.option("--dry-run", is_flag=True, help="Apply but do not commit.")
@click.pass_context
def apply(ctx, path, script, trust, require_signature, expect_sha256,
    create, dry_run):
    """Apply the edit SCRIPT to PATH as one commit.

    Nothing is written unless every edit applies and, when given, the
    resulting digest matches."""
    try:
        script_ = edits.Script.loads(script.read())
        if require_signature or len(trust) > 0:
            integrity.verify(script_, trust if len(trust) > 0 else None)

        with fs.open_path(path, create=create,
            block_size=ctx.obj["block_size"]) as deferred:
            script_.apply(deferred)

            if expect_sha256 is not None:
                actual = integrity.digest(deferred)
                if actual != expect_sha256.lower():
                    raise exceptions.ValidationError(
                        f"digest mismatch, got {actual}")

            finish(deferred, path, dry_run)
    except (OSError, ValueError, exceptions.ValidationError,
        exceptions.InvalidOperationError) as error:
        raise click.ClickException(str(error)) from error

@cli.command("digest")
@click.argument("path", type=click.Path(
    exists=True, dir_okay=False, path_type=pathlib.Path))
@click.pass_context
def digest(ctx, path):
    """Print the SHA256 of PATH."""
    try:
        with fs.open_path(path, writable=False,
            block_size=ctx.obj["block_size"]) as deferred:
            click.echo(integrity.digest(deferred))
    except (OSError, ValueError) as error:
        raise click.ClickException(str(error)) from error

@cli.command("keygen")
def keygen():
    """Print a new signing key pair as JSON."""
    click.echo(json.dumps(integrity.KeyPair().serialize(), indent=2))

@cli.command("sign")
@click.argument("script", type=click.File("r"))
@click.argument("keyfile", type=click.File("r"))
def sign(script, keyfile):
    """Print SCRIPT signed with the key pair in KEYFILE."""
    try:
        script_ = edits.Script.loads(script.read())
        key_pair = integrity.KeyPair.deserialize(json.load(keyfile))
    except (ValueError, KeyError, exceptions.ValidationError) as error:
        raise click.ClickException(str(error)) from error

    click.echo(key_pair.signer().sign(script_).dumps())
