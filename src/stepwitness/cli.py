"""Step Witness CLI."""

from __future__ import annotations

import json
import logging
import os
import sys
import traceback
from pathlib import Path

import click

from stepwitness import __version__
from stepwitness.attestation import list_attestors
from stepwitness.config import RunOptions
from stepwitness.dsse import Envelope, verify_envelope
from stepwitness.errors import PublishError, SignerLoadError, StepWitnessError
from stepwitness.pipeline import run_pipeline
from stepwitness.signing.signer import Signer, Verifier

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR"]


def handle_error(error: Exception, debug: bool) -> None:
    """Report an error and exit with status 1.

    Args:
        error: The exception that occurred
        debug: Whether to show full traceback
    """
    if debug:
        traceback.print_exc()
    elif isinstance(error, SignerLoadError):
        click.echo("Error: failed to load signers", err=True)
        for err in error.errors:
            click.echo(f"  - {err}", err=True)
    else:
        click.echo(f"Error: {error}", err=True)
    sys.exit(1)


@click.group()
@click.version_option(version=__version__, prog_name="stepwitness")
@click.option('--log-level', type=click.Choice(LOG_LEVELS, case_sensitive=False), default='INFO',
              help='Log level for diagnostics on stderr')
@click.option('--debug', is_flag=True, help='Enable debug mode (show full tracebacks)')
@click.pass_context
def cli(ctx: click.Context, log_level: str, debug: bool):
    """Step Witness - signed provenance records for build and deploy steps."""
    logging.basicConfig(
        level=logging.DEBUG if debug else getattr(logging, log_level.upper()),
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    ctx.ensure_object(dict)
    ctx.obj['debug'] = debug


@cli.command(context_settings={"ignore_unknown_options": True, "allow_interspersed_args": False})
@click.option('--config', '-c', type=click.Path(exists=True, dir_okay=False, path_type=Path),
              help='YAML config file; flags override its values')
@click.option('--step', '-s', help='Name of the step being run')
@click.option('--outfile', '-o', help='File to write the signed envelope to (default: stdout)')
@click.option('--workingdir', '-d', help='Directory the command runs in (default: current directory)')
@click.option('--key', '-k', multiple=True, help='Path to a PEM private key (repeatable)')
@click.option('--env-key/--no-env-key', default=None,
              help='Also load a signing key from STEPWITNESS_SIGNING_PRIVATE_KEY')
@click.option('--timestamp-servers', '-t', multiple=True, help='RFC 3161 timestamp authority URL (repeatable)')
@click.option('--trace/--no-trace', default=None, help='Record the process tree of the command')
@click.option('--attestations', '-a', multiple=True, help='Additional attestor to run (repeatable)')
@click.option('--attestor-option', multiple=True, metavar='TYPE.OPTION=VALUE',
              help='Set an attestor option (repeatable)')
@click.option('--enable-archivista/--disable-archivista', default=None,
              help='Store the signed envelope in Archivista')
@click.option('--archivista-server', help='Archivista URL')
@click.argument('command', nargs=-1, type=click.UNPROCESSED)
@click.pass_context
def run(
    ctx: click.Context,
    config: Path | None,
    step: str | None,
    outfile: str | None,
    workingdir: str | None,
    key: tuple[str, ...],
    env_key: bool | None,
    timestamp_servers: tuple[str, ...],
    trace: bool | None,
    attestations: tuple[str, ...],
    attestor_option: tuple[str, ...],
    enable_archivista: bool | None,
    archivista_server: str | None,
    command: tuple[str, ...],
):
    """Run COMMAND and record a signed attestation of the execution.

    Without a command, only the working directory is attested.

    Examples:
      stepwitness run -s build -k signing.key -o build.att.json -- make all
      stepwitness run -c witness.yaml -a environment -a git -- ./build.sh
    """
    debug = ctx.obj.get('debug', False)

    try:
        overrides = {
            "step": step,
            "outfile": outfile,
            "workingdir": workingdir,
            "key": key,
            "env-key": env_key,
            "timestamp-servers": timestamp_servers,
            "trace": trace,
            "attestations": attestations,
            "attestor-option": attestor_option,
            "enable-archivista": enable_archivista,
            "archivista-server": archivista_server,
        }
        try:
            if config:
                options = RunOptions.from_yaml(config, overrides)
            else:
                options = RunOptions.from_dict({}, overrides)
        except (ValueError, OSError) as e:
            raise click.UsageError(str(e)) from e

        outcome = run_pipeline(options, list(command))

        if outcome.out_path is not None:
            click.echo(f"Envelope written to {outcome.out_path}", err=True)
        if outcome.gitoid:
            click.echo(f"Stored in archivista as {outcome.gitoid}", err=True)
    except PublishError as e:
        click.echo("Local envelope was written; retry publishing with that file.", err=True)
        handle_error(e, debug)
    except StepWitnessError as e:
        handle_error(e, debug)


@cli.command()
@click.option('--out-dir', '-o', required=True, type=click.Path(file_okay=False, path_type=Path),
              help='Directory for signing.key and signing.pub')
@click.option('--force', is_flag=True, help='Overwrite existing key files')
@click.pass_context
def keygen(ctx: click.Context, out_dir: Path, force: bool):
    """Generate an Ed25519 signing key pair."""
    debug = ctx.obj.get('debug', False)

    try:
        private_path = out_dir / "signing.key"
        public_path = out_dir / "signing.pub"
        if not force and (private_path.exists() or public_path.exists()):
            raise click.UsageError(f"key files already exist in {out_dir} (use --force)")

        private_pem, public_pem = Signer.generate_keys()
        out_dir.mkdir(parents=True, exist_ok=True)
        private_path.write_bytes(private_pem)
        os.chmod(private_path, 0o600)
        public_path.write_bytes(public_pem)

        click.echo(f"Private key: {private_path}")
        click.echo(f"Public key:  {public_path}")
    except OSError as e:
        handle_error(e, debug)


@cli.command()
@click.option('--envelope', '-e', required=True, type=click.Path(exists=True, dir_okay=False, path_type=Path),
              help='Signed envelope to verify')
@click.option('--public-key', '-k', required=True, multiple=True,
              type=click.Path(exists=True, dir_okay=False, path_type=Path),
              help='Trusted PEM public key (repeatable)')
@click.pass_context
def verify(ctx: click.Context, envelope: Path, public_key: tuple[Path, ...]):
    """Verify the signature of an attestation envelope.

    Examples:
      stepwitness verify -e build.att.json -k signing.pub
    """
    debug = ctx.obj.get('debug', False)

    try:
        try:
            signed = Envelope.from_json(envelope.read_bytes())
            statement = signed.decoded_payload()
            if not isinstance(statement, dict):
                raise ValueError("payload is not a JSON object")
        except ValueError as e:
            raise click.UsageError(f"{envelope} is not a valid envelope: {e}") from e

        verifiers = [Verifier.from_pem(path.read_bytes()) for path in public_key]
        matched = verify_envelope(signed, verifiers)

        predicate = statement.get("predicate", {})
        click.echo("Verification Result: VALID")
        click.echo(f"  Step: {predicate.get('name', '')}")
        click.echo(f"  Attestors: {', '.join(a.get('type', '') for a in predicate.get('attestations', []))}")
        click.echo(f"  Subjects: {len(statement.get('subject', []))}")
        for key_id in matched:
            click.echo(f"  Signed by: {key_id}")
    except StepWitnessError as e:
        click.echo("Verification Result: INVALID", err=True)
        handle_error(e, debug)


@cli.command(name="attestors")
@click.option('--json', 'as_json', is_flag=True, help='Output JSON')
def list_attestors_command(as_json: bool):
    """List available attestors and their options."""
    entries = list_attestors()
    if as_json:
        click.echo(json.dumps(entries, indent=2, sort_keys=True))
        return

    for entry in entries:
        options = ", ".join(entry["options"]) or "-"
        click.echo(f"{entry['type']:<14} {entry['run_type']:<14} {options}")


def main() -> None:
    """Console script entry point."""
    cli(prog_name="stepwitness")


if __name__ == "__main__":
    main()
