"""Command-line interface for volback."""

import functools
import json
import sys
from pathlib import Path

import click
from dotenv import load_dotenv

from .archiver import PackmateArchiver
from .config import ConfigLoader, VolbackConfig
from .docker_control import ContainerRuntime
from .dropbox_client import DropboxStorage
from .exceptions import ConfigurationError, VolbackError
from .logging_config import configure_logging
from .retention import RetentionOrchestrator
from .runner import BackupRunner, ContainerStatus
from .storage_backend import LocalFilesystemStorage, RemoteStorage, join_remote_path

__version__ = "0.1.0"


def echo_success(message, quiet=False):
    """Echo success message in green."""
    if not quiet:
        click.secho(f"✅ {message}", fg="green")


def echo_error(message):
    """Echo error message in red."""
    click.secho(f"❌ {message}", fg="red", err=True)


def echo_info(message, quiet=False):
    """Echo info message in blue."""
    if not quiet:
        click.secho(message, fg="blue")


def echo_warning(message, quiet=False):
    """Echo warning message in yellow."""
    if not quiet:
        click.secho(f"⚠️  {message}", fg="yellow")


def format_duration(seconds):
    """Format duration in human-readable format."""
    if seconds < 1:
        return f"{seconds*1000:.0f}ms"
    elif seconds < 60:
        return f"{seconds:.1f}s"
    else:
        minutes = int(seconds // 60)
        secs = int(seconds % 60)
        return f"{minutes}m {secs}s"


def storage_options(func):
    """Options shared by every command that talks to the archive store."""
    options = [
        click.option(
            "--config",
            "config_path",
            type=click.Path(exists=True, dir_okay=False),
            default=None,
            envvar="VOLBACK_CONFIG",
            help="YAML configuration file (flags override its values)",
        ),
        click.option(
            "--containers",
            "containers_json",
            envvar="CONTAINERS",
            help="JSON array of container configurations (or set CONTAINERS env var)",
        ),
        click.option(
            "--dropbox-refresh-token",
            envvar="DROPBOX_REFRESH_TOKEN",
            help="Dropbox refresh token (or set DROPBOX_REFRESH_TOKEN env var)",
        ),
        click.option(
            "--dropbox-client-id",
            envvar="DROPBOX_CLIENT_ID",
            help="Dropbox client ID (or set DROPBOX_CLIENT_ID env var)",
        ),
        click.option(
            "--dropbox-client-secret",
            envvar="DROPBOX_CLIENT_SECRET",
            help="Dropbox client secret (or set DROPBOX_CLIENT_SECRET env var)",
        ),
        click.option(
            "--dropbox-path",
            envvar="DROPBOX_PATH",
            help="Destination path prefix, e.g. /backups (or set DROPBOX_PATH env var)",
        ),
        click.option(
            "--local-path",
            envvar="LOCAL_BACKUP_PATH",
            type=click.Path(file_okay=False),
            help="Store archives in a local directory instead of Dropbox",
        ),
        click.option("--keep-daily", type=click.IntRange(min=0), envvar="KEEP_DAILY",
                     help="Number of daily backups to keep"),
        click.option("--keep-weekly", type=click.IntRange(min=0), envvar="KEEP_WEEKLY",
                     help="Number of weekly backups to keep"),
        click.option("--keep-monthly", type=click.IntRange(min=0), envvar="KEEP_MONTHLY",
                     help="Number of monthly backups to keep"),
        click.option("--keep-yearly", type=click.IntRange(min=0), envvar="KEEP_YEARLY",
                     help="Number of yearly backups to keep"),
        click.option("--chunk-size-mb", type=click.IntRange(min=1), envvar="CHUNK_SIZE_MB",
                     help="Upload chunk size in MiB (default: 150)"),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def load_config(params) -> VolbackConfig:
    """Build the validated configuration from command parameters."""
    loader = ConfigLoader()
    base = loader.load_raw(params["config_path"]) if params["config_path"] else {}
    return loader.from_values(
        base=base,
        containers_json=params["containers_json"],
        refresh_token=params["dropbox_refresh_token"],
        client_id=params["dropbox_client_id"],
        client_secret=params["dropbox_client_secret"],
        destination_path=params["dropbox_path"],
        local_path=params["local_path"],
        keep_daily=params["keep_daily"],
        keep_weekly=params["keep_weekly"],
        keep_monthly=params["keep_monthly"],
        keep_yearly=params["keep_yearly"],
        chunk_size_mb=params["chunk_size_mb"],
    )


def create_storage(config: VolbackConfig) -> RemoteStorage:
    """Instantiate the storage backend selected by the configuration."""
    if config.local_path:
        return LocalFilesystemStorage(Path(config.local_path).absolute())
    return DropboxStorage(
        refresh_token=config.dropbox.refresh_token,
        client_id=config.dropbox.client_id,
        client_secret=config.dropbox.client_secret,
    )


def exit_on_error(func):
    """Turn configuration and tool errors into a red message and exit code 1."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except ConfigurationError as e:
            echo_error(f"Configuration error: {e}")
            sys.exit(1)
        except OSError as e:
            echo_error(f"Error: {e}")
            sys.exit(1)
        except VolbackError as e:
            echo_error(f"Error: {e}")
            sys.exit(1)

    return wrapper


@click.group()
@click.version_option(version=__version__)
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output")
@click.option("--json-logs", is_flag=True, help="Emit JSON-formatted structured logs")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="INFO",
    envvar="LOG_LEVEL",
    help="Log level (default: INFO)",
)
@click.pass_context
def main(ctx, quiet, json_logs, log_level):
    """Docker Volume Backup Utility.

    Archive container volumes, upload them to Dropbox and prune old backups.
    """
    load_dotenv()

    ctx.ensure_object(dict)
    ctx.obj["QUIET"] = quiet

    configure_logging(level=log_level, json_format=json_logs)


@main.command()
@storage_options
@click.pass_context
@exit_on_error
def run(ctx, **params):
    """Back up all configured containers.

    Examples:
        # Everything from the environment
        CONTAINERS='[{"container": "db", "stop": true}]' volback run

        # YAML configuration with a retention override
        volback run --config volback.yaml --keep-daily 7
    """
    quiet = ctx.obj.get("QUIET", False)
    config = load_config(params)

    runner = BackupRunner(
        storage=create_storage(config),
        archiver=PackmateArchiver(),
        runtime=ContainerRuntime(),
        destination_path=config.destination_path,
        policy=config.retention.to_policy(),
        chunk_size=config.chunk_size,
        temp_root=Path(config.temp_root),
        fail_on_retention_error=config.fail_on_retention_error,
    )

    echo_info(f"\n📋 Found {len(config.containers)} containers to process", quiet)
    summary = runner.run(config.containers)

    for result in summary.results:
        if result.status is ContainerStatus.SUCCEEDED:
            echo_success(
                f"{result.container}: {result.remote_path} ({format_duration(result.duration)})",
                quiet,
            )
            if result.retention is not None:
                click.echo(
                    f"   Retention: kept {result.retention.kept_count}, "
                    f"deleted {result.retention.deleted_count}, "
                    f"failed {result.retention.failed_count}"
                )
            if result.retention_error:
                echo_warning(f"Retention failed: {result.retention_error}", quiet)
        elif result.status is ContainerStatus.SKIPPED:
            echo_warning(f"{result.container}: skipped ({result.error})")
        else:
            echo_error(f"{result.container}: {result.error}")

    if not summary.ok:
        echo_error(
            f"Backup finished with {len(summary.failed)} failed and "
            f"{len(summary.skipped)} skipped container(s)"
        )
        sys.exit(1)

    echo_success("✨ Backup process completed successfully!", quiet)


@main.command()
@storage_options
@click.option(
    "--backup-id",
    required=True,
    help="Backup group to prune (the folder under the destination path)",
)
@click.option("--dry-run", is_flag=True, help="Show what would be deleted without deleting")
@click.pass_context
@exit_on_error
def prune(ctx, backup_id, dry_run, **params):
    """Apply the retention policy to one backup group.

    Examples:
        volback prune --backup-id nextcloud --keep-daily 7 --keep-weekly 4 --dry-run
    """
    quiet = ctx.obj.get("QUIET", False)
    if not params["containers_json"]:
        # Pruning needs no container list; satisfy validation with the group itself
        params["containers_json"] = json.dumps([{"container": backup_id}])
    config = load_config(params)
    policy = config.retention.to_policy()

    if not policy.enabled:
        echo_warning("All retention counts are 0; refusing to delete every backup", quiet)
        sys.exit(1)

    path = join_remote_path(config.destination_path, backup_id)
    summary = RetentionOrchestrator(create_storage(config), policy).apply(path, dry_run=dry_run)

    verb = "Would delete" if dry_run else "Deleted"
    for remote_path in summary.kept:
        click.echo(f"  📌 keep    {remote_path}")
    for remote_path in summary.deleted:
        click.echo(f"  🗑️  delete  {remote_path}")
    for failure in summary.failed:
        echo_error(f"Failed to delete {failure.remote_path}: {failure.error}")
    for name in summary.skipped:
        echo_warning(f"Ignored file with invalid name: {name}", quiet)

    echo_info(
        f"Kept {summary.kept_count}, {verb.lower()} {summary.deleted_count}, "
        f"failed {summary.failed_count}",
        quiet,
    )
    if summary.failed:
        sys.exit(1)


@main.command()
def version():
    """Show version information."""
    click.echo(f"volback version {__version__}")


if __name__ == "__main__":
    main()
