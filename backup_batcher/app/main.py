"""CLI entry point for local development."""
from typing import List, Optional

import typer

from backup_batcher.domain.entities.run import RunStatus
from backup_batcher.infra.common import load_app_config, load_job_config, setup_logging, get_logger
from backup_batcher.use_cases.restore_files import restore_day
from backup_batcher.use_cases.run_day import run_day

setup_logging()
logger = get_logger(__name__)

app = typer.Typer(help="Batch, archive and back up directory trees to S3.")


@app.callback()
def configure(
    log_level: Optional[str] = typer.Option(
        None, "--log-level", help="Log level name, e.g. DEBUG (defaults to LOG_LEVEL or INFO)"
    ),
):
    """Batch, archive and back up directory trees to S3."""
    if log_level is not None:
        try:
            setup_logging(log_level, force=True)
        except ValueError as e:
            raise typer.BadParameter(str(e), param_hint="--log-level") from e


@app.command()
def run(
    job_id: str = typer.Argument(..., help="Job ID"),
    root_path: Optional[str] = typer.Option(None, "--root", help="Override the job's root path"),
    day_key: Optional[str] = typer.Option(None, "--day-key", help="Day key (defaults to <root>-<YYYYMMDD>)"),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to the job YAML"),
):
    """Run one day of a backup job."""
    app_config = load_app_config()
    job = load_job_config(job_id, config_path)

    run_result = run_day(job, app_config, root_path=root_path, day_key=day_key)

    summary = run_result.summary
    typer.echo(
        f"Backup {run_result.status.value}: day={run_result.day_key}, run_id={run_result.run_id}, "
        f"batches={summary.batch_count}, uploaded={summary.uploaded_batches}, "
        f"skipped_files={len(summary.skipped_files)}"
    )
    if run_result.error:
        typer.echo(f"Error: {run_result.error}", err=True)
    if run_result.status == RunStatus.FAILED:
        raise typer.Exit(code=1)


@app.command()
def restore(
    job_id: str = typer.Argument(..., help="Job ID"),
    day_key: str = typer.Argument(..., help="Day key to restore from"),
    target_dir: str = typer.Argument(..., help="Directory to restore into"),
    paths: Optional[List[str]] = typer.Option(None, "--path", help="Relative path to restore (repeatable)"),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to the job YAML"),
):
    """Restore files from a committed day-run."""
    app_config = load_app_config()
    job = load_job_config(job_id, config_path)

    report = restore_day(job, app_config, day_key, target_dir, paths=paths or None)

    typer.echo(
        f"Restored {len(report.restored_files)} files ({report.total_bytes} bytes) "
        f"from {len(report.archives_read)} archives into {report.target_dir}"
    )


if __name__ == "__main__":
    app()
