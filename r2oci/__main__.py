import asyncio
import logging
import logging.config
from pathlib import Path

import click

import r2oci
from r2oci.pipeline import Pipeline
from r2oci.skopeo import ImageReference

LOGGING_CONFIG = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "default": {
            "format": "%(asctime)s %(levelname)-8s %(name)s: %(message)s",
        },
    },
    "handlers": {
        "default": {
            "formatter": "default",
            "class": "logging.StreamHandler",
            "stream": "ext://sys.stderr",
        },
    },
    "root": {"handlers": ["default"], "level": "WARNING"},
    "loggers": {
        "r2oci": {"level": "INFO"},
    },
}


@click.group()
@click.option("-d", "--debug", help="Debug output", is_flag=True)
def cli(debug: bool):
    logging.config.dictConfig(LOGGING_CONFIG)
    if debug:
        logging.getLogger("r2oci").setLevel(logging.DEBUG)


@cli.command()
@click.argument("image")
@click.option("-t", "--tag", help="Image tag, overrides a tag in IMAGE", default=None)
@click.option(
    "-c",
    "--concurrency",
    help="Parallel uploads",
    type=click.IntRange(min=1),
    default=4,
)
@click.option("--prefix", help="Key prefix inside the bucket", default="")
@click.option("--all", "all_platforms", help="Copy every platform", is_flag=True)
@click.option(
    "--transport",
    help="skopeo source transport",
    default="docker://",
    show_default=True,
)
@click.option(
    "--timeout", help="Stop starting uploads after this many seconds", type=float
)
@click.option(
    "--convert-timeout",
    help="Stop skopeo after this many seconds",
    type=click.FloatRange(min=0, min_open=True),
)
@click.option(
    "--work-dir",
    help="Directory for temporary files",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=None,
)
def upload(
    image: str,
    tag: str | None,
    concurrency: int,
    prefix: str,
    all_platforms: bool,
    transport: str,
    timeout: float | None,
    convert_timeout: float | None,
    work_dir: Path | None,
):
    """Upload IMAGE[:TAG] to the R2 bucket configured in the environment."""
    try:
        reference = ImageReference.parse(image)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="IMAGE") from e
    if tag is not None:
        reference = ImageReference(name=reference.name, tag=tag)
    try:
        options = r2oci.PipelineOptions(
            concurrency=concurrency,
            key_prefix=prefix,
            all_platforms=all_platforms,
            transport=transport,
            work_dir=work_dir,
            convert_timeout=convert_timeout,
        )
        pipeline = Pipeline(config=r2oci.R2Config.from_env(), options=options)
        result = asyncio.run(pipeline.run(reference, timeout=timeout))
    except r2oci.R2OCIError as e:
        raise click.ClickException(f"{type(e).__name__}: {e}")

    click.echo(
        f"{reference}: {result.uploaded_count} uploaded, "
        f"{result.skipped_count} skipped, {len(result.failures)} failed"
    )
    for failure in result.failures:
        click.echo(f"  {failure.task.key}: {failure.kind}: {failure.error}", err=True)
    if not result.ok:
        raise SystemExit(1)


if __name__ == "__main__":
    cli()
