"""CLI commands for Offload."""

import asyncio
import logging
import shutil
import sys
from pathlib import Path

import click

from offload.config import get_settings
from offload.lib import observability


def _configure(debug: bool) -> None:
    settings = get_settings()
    logging.basicConfig(
        level=logging.DEBUG if debug or settings.debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    observability.configure(settings)
    observability.instrument_httpx()


@click.group()
@click.version_option(package_name="offload")
@click.option("--debug", is_flag=True, help="Log conversion and staging decisions")
def cli(debug):
    """Offload - keep a CMS media library in S3."""
    _configure(debug)


@cli.command()
@click.argument("path")
def resolve(path):
    """Show where a local upload path lives in the bucket."""
    from offload.lib.paths import PathResolver

    resolver = PathResolver.from_config(get_settings().s3)
    remote = resolver.resolve_upload_root(path)
    click.echo(f"remote:  {remote}")
    click.echo(f"url:     {resolver.resolve_url(remote)}")

    locator = resolver.reverse_local_path_to_locator(remote)
    if locator is None:
        click.echo("locator: (outside the bucket)")
    else:
        click.echo(f"locator: bucket={locator.bucket} key={locator.key}")


@cli.command()
@click.argument("source", type=click.Path(exists=True, dir_okay=False))
@click.option("--quality", default=None, type=click.IntRange(0, 100), help="WebP quality (default from config)")
@click.option("--type", "mime_type", default=None, help="MIME type of SOURCE (detected if omitted)")
def convert(source, quality, mime_type):
    """Transcode a PNG/JPEG file to WebP next to the original."""
    from offload.intake import convert_original_prefilter
    from offload.lib.imaging import ConversionPolicy, detect_image_content_type
    from offload.media import UploadedFile

    settings = get_settings()
    src = Path(source)
    mime_type = mime_type or detect_image_content_type(src.read_bytes()[:16]) or "application/octet-stream"

    policy = ConversionPolicy(quality=quality if quality is not None else settings.s3.webp_quality)
    if not policy.should_convert(mime_type):
        click.echo(f"{src.name}: {mime_type} is not converted", err=True)
        sys.exit(1)

    work = src.with_name(f".{src.name}.offload")
    shutil.copyfile(src, work)
    upload = UploadedFile(name=src.name, type=mime_type, tmp_name=str(work), size=src.stat().st_size)
    result = asyncio.run(convert_original_prefilter(upload, policy))

    if result.type == mime_type:
        work.unlink(missing_ok=True)
        click.echo(f"{src.name}: conversion failed, original left unchanged", err=True)
        sys.exit(1)

    target = src.with_name(result.name)
    work.replace(target)
    click.echo(f"{target} ({result.size} bytes, was {upload.size})")


def _with_offload(func):
    """Run ``func(offload)`` against the configured bucket and metadata store."""
    from offload.db.store import create_metadata_store
    from offload.lib.hooks import HookRegistry
    from offload.plugin import MediaOffload

    async def run():
        settings = get_settings()
        metadata, engine = await create_metadata_store(settings.db)
        offload = MediaOffload(settings.s3, HookRegistry(), metadata)
        await offload.setup()
        try:
            return await func(offload)
        finally:
            await offload.tear_down()
            await engine.dispose()

    return asyncio.run(run())


@cli.command("set-acl")
@click.argument("media_id", type=int)
@click.argument("acl", type=click.Choice(["public-read", "private"]))
def set_acl(media_id, acl):
    """Apply an ACL to every stored file of a media object."""
    from offload.lib.exceptions import AclUpdateFailedError

    async def run(offload):
        await offload.visibility.set_files_acl(media_id, acl)
        media = await offload.metadata.get(media_id)
        if media is not None:
            media.private = acl == "private"
            await offload.metadata.save(media)

    try:
        _with_offload(run)
    except AclUpdateFailedError as exc:
        click.echo(f"ACL update failed: {exc}", err=True)
        sys.exit(1)
    click.echo(f"Media {media_id} is now {acl}")


@cli.command()
@click.argument("url")
@click.argument("media_id", type=int)
def sign(url, media_id):
    """Print URL with a presigned query, as rendered for a private object."""
    from offload.lib.hooks import IS_ATTACHMENT_PRIVATE

    async def run(offload):
        offload.hooks.add_filter(IS_ATTACHMENT_PRIVATE, lambda private, mid: private or mid == media_id)
        return await offload.visibility.sign_url(url, media_id)

    click.echo(_with_offload(run))


if __name__ == "__main__":
    cli()
