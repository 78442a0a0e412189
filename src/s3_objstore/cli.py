"""Command-line interface for s3-objstore.

Commands:
    - validate-config: Decode and validate a bucket configuration file
    - upload: Upload a local file, retrying while the backend throttles
"""

from pathlib import Path
from typing import Annotated, Optional

import typer

from . import __version__
from .core import Context
from .objectstorage import S3Bucket, load_config, validate

app = typer.Typer(
    name="s3-objstore",
    help="Upload objects to S3-compatible storage.",
    no_args_is_help=True,
)


def version_callback(value: bool) -> None:
    """Display version information."""
    if value:
        typer.echo(f"s3-objstore {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        Optional[bool],
        typer.Option("--version", callback=version_callback, help="Show version."),
    ] = None,
) -> None:
    """
    S3-Objstore: validated bucket configuration and resilient uploads.
    """
    pass


ConfigArgument = Annotated[
    Path, typer.Argument(help="Path to the YAML bucket configuration")
]


@app.command("validate-config")
def validate_config_cmd(config_path: ConfigArgument) -> None:
    """
    Decode and validate a bucket configuration.

    Example:
        s3-objstore validate-config bucket.yaml
    """
    try:
        config = load_config(config_path)
        validate(config)

        typer.echo(f"Bucket: {config.bucket}")
        typer.echo(f"Endpoint: {config.endpoint or '(default)'}")
        typer.echo(f"SSE: {config.sse_config.type or 'none'}")
        typer.echo(f"Part size: {config.part_size:,} bytes")
        typer.echo("✓ Configuration is valid")

    except Exception as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)


@app.command("upload")
def upload_cmd(
    config_path: ConfigArgument,
    source: Annotated[Path, typer.Argument(help="Local file to upload")],
    key: Annotated[str, typer.Argument(help="Object key in the bucket")],
    max_retries: Annotated[
        Optional[int],
        typer.Option("--max-retries", help="Retries allowed after a throttled attempt"),
    ] = None,
    backoff: Annotated[
        Optional[float],
        typer.Option("--backoff", help="Seconds to wait between attempts"),
    ] = None,
    timeout: Annotated[
        Optional[float],
        typer.Option("--timeout", help="Give up after this many seconds"),
    ] = None,
    content_type: Annotated[
        Optional[str], typer.Option("--content-type", help="Content-Type of the object")
    ] = None,
) -> None:
    """
    Upload a local file to the configured bucket.

    Example:
        s3-objstore upload bucket.yaml ./backup.tar backups/backup.tar \
            --max-retries 5 --backoff 2
    """
    try:
        bucket = S3Bucket(load_config(config_path))
        if timeout is not None:
            ctx = Context.with_deadline_in(timeout)
        else:
            ctx = Context.background()

        remaining = bucket.upload_file(
            key,
            source,
            ctx=ctx,
            content_type=content_type,
            max_retries=max_retries,
            backoff=backoff,
        )

        typer.echo(f"✓ Uploaded {source} to s3://{bucket.name}/{key}")
        typer.echo(f"Unused retries: {remaining}")

    except Exception as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
