"""
TeleCap CLI - Command Line Interface
====================================

Maintenance tools for a capture storage directory: configuration,
storage status, retention and a synthetic test recording.
"""

import sys
import time
from pathlib import Path

import click
import cv2
import numpy as np

from telecap.config.config_manager import CONFIG_PATH_ENV, DEFAULT_CONFIG_PATH, ConfigManager
from telecap.config.defaults import create_default_config_file
from telecap.core import retention
from telecap.core.camera_stream import CameraStreamLogger
from telecap.core.storage_guard import StorageGuard
from telecap.utils.exceptions import ConfigurationError
from telecap.utils.helpers import ensure_directory, format_bytes, get_file_size, list_matching_files
from telecap.utils.logger import setup_logging


def _load_manager(ctx) -> ConfigManager:
    manager = ConfigManager(ctx.obj['config_path'])
    try:
        manager.load_config()
    except ConfigurationError as e:
        click.echo(f"❌ {e.message}")
        sys.exit(1)

    logging_config = manager.get_value("logging", {})
    setup_logging(
        level='DEBUG' if ctx.obj['verbose'] else logging_config.get("level", "INFO"),
        log_file=logging_config.get("file"),
        log_directory=logging_config.get("directory"),
        json_format=logging_config.get("json_format", False),
        async_logging=logging_config.get("async_logging", False)
    )
    return manager


@click.group()
@click.option('--config', '-c', default=DEFAULT_CONFIG_PATH, envvar=CONFIG_PATH_ENV,
              help='Configuration file path')
@click.option('--verbose', '-v', is_flag=True, help='Verbose output')
@click.pass_context
def cli(ctx, config, verbose):
    """TeleCap - rotating telemetry and video capture"""
    ctx.ensure_object(dict)
    ctx.obj['config_path'] = config
    ctx.obj['verbose'] = verbose

    setup_logging(level='DEBUG' if verbose else 'WARNING')


@cli.command()
@click.option('--force', is_flag=True, help='Overwrite an existing file')
@click.pass_context
def init(ctx, force):
    """Write the default configuration file."""
    config_path = Path(ctx.obj['config_path'])

    if config_path.exists() and not force:
        click.echo(f"❌ {config_path} already exists. Use --force to overwrite.")
        return

    try:
        create_default_config_file(config_path)
    except OSError as e:
        click.echo(f"❌ Failed to create configuration: {e}")
        sys.exit(1)

    click.echo(f"✅ Configuration written to {config_path}")


@cli.command()
@click.pass_context
def status(ctx):
    """Show free space and the files under retention."""
    manager = _load_manager(ctx)
    storage_dir = manager.storage_dir()
    log_policy = manager.log_policy()
    video_policy = manager.video_policy()

    click.echo(f"📁 Storage: {storage_dir}")
    if not storage_dir.exists():
        click.echo("⚠️  Directory does not exist yet")
        return

    guard = StorageGuard()
    free = guard.free_space(storage_dir)
    minimum = max(log_policy.minimum_free_space_bytes, video_policy.minimum_free_space_bytes)
    marker = "✅" if free > minimum else "❌"
    click.echo(f"{marker} Free space: {format_bytes(free)} (minimum {format_bytes(minimum)})")

    active_log = storage_dir / log_policy.file_name()
    if active_log.exists():
        click.echo(f"📝 Active log: {active_log.name} "
                   f"({format_bytes(get_file_size(active_log))} of {format_bytes(log_policy.rotate_size_bytes)})")

    for label, policy in (("Logs", log_policy), ("Videos", video_policy)):
        files = list_matching_files(storage_dir, policy.file_name_prefix, policy.file_name_extension)
        click.echo(f"{label}: {len(files)} file(s), keeping {policy.keep_files}")
        for path in files:
            click.echo(f"   • {path.name} ({format_bytes(get_file_size(path))})")


@cli.command()
@click.option('--dry-run', is_flag=True, help='Only report what would be deleted')
@click.pass_context
def sweep(ctx, dry_run):
    """Apply retention to logs and videos now."""
    manager = _load_manager(ctx)
    storage_dir = manager.storage_dir()

    for policy in (manager.log_policy(), manager.video_policy()):
        # sweep() makes room for one new file, so keep one more here
        keep = policy.keep_files + 1
        if dry_run:
            files = sorted(
                list_matching_files(storage_dir, policy.file_name_prefix, policy.file_name_extension),
                key=lambda path: path.stat().st_mtime
            )
            doomed = files[:max(len(files) - policy.keep_files, 0)]
        else:
            doomed = retention.sweep(storage_dir, policy.file_name_prefix, policy.file_name_extension, keep)

        verb = "Would delete" if dry_run else "Deleted"
        click.echo(f"🧹 {policy.file_name_prefix}*{policy.file_name_extension}: {verb} {len(doomed)} file(s)")
        for path in doomed:
            click.echo(f"   • {path.name}")


@cli.command()
@click.pass_context
def validate_config(ctx):
    """Validate configuration file."""
    config_path = Path(ctx.obj['config_path'])

    if not config_path.exists():
        click.echo(f"❌ Configuration file not found: {config_path}")
        sys.exit(1)

    click.echo(f"🔍 Validating configuration: {config_path}")

    manager = ConfigManager(config_path)
    try:
        manager.load_config()
    except ConfigurationError as e:
        click.echo("❌ Configuration validation failed:")
        for error in e.technical_details.get('errors', [e.message]):
            click.echo(f"   • {error}")
        sys.exit(1)

    for warning in manager.validator.warnings:
        click.echo(f"⚠️  {warning.field}: {warning.message}")
    click.echo("✅ Configuration is valid")


@cli.command()
@click.option('--frames', default=60, help='Number of frames to generate')
@click.option('--input-rate', default=30.0, help='Rate at which frames are generated')
@click.option('--width', default=320, help='Frame width')
@click.option('--height', default=240, help='Frame height')
@click.option('--tag', default='test', help='Stream tag used in the file name')
@click.pass_context
def test_recording(ctx, frames, input_rate, width, height, tag):
    """Record a synthetic clip through the video capture path."""
    manager = _load_manager(ctx)
    storage_dir = ensure_directory(manager.storage_dir())

    stream = CameraStreamLogger(
        tag=tag,
        frame_rate=manager.get_value("video.frame_rate"),
        directory=storage_dir,
        policy=manager.video_policy()
    )

    click.echo(f"🎬 Recording {frames} frames at {input_rate:.1f} FPS into {storage_dir}")
    for index in range(frames):
        frame = np.zeros((height, width, 3), dtype=np.uint8)
        frame[:, :, index % 3] = 64
        cv2.putText(frame, f"{index}", (10, height // 2), cv2.FONT_HERSHEY_SIMPLEX, 1.0, (255, 255, 255), 2)
        stream.process_frame(frame)
        time.sleep(1.0 / input_rate)

    summary = stream.close()
    if summary is None:
        error = stream.session.last_error
        click.echo(f"❌ Nothing recorded: {error.message if error else 'unknown error'}")
        sys.exit(1)

    click.echo(f"✅ {summary.path}: {summary.frames_written} frames in {summary.duration_ms:.0f}ms "
               f"({summary.realized_fps:.2f} FPS)")


def main():
    """Main CLI entry point."""
    cli(obj={})


if __name__ == '__main__':
    main()
