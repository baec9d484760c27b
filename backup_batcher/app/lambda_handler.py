"""AWS Lambda handler."""
import json
from typing import Any

from backup_batcher.infra.common import (
    BackupError,
    ConfigError,
    ManifestConflict,
    load_app_config,
    load_job_config,
    setup_logging,
    get_logger,
)
from backup_batcher.use_cases.run_day import run_day

setup_logging(force=True)
logger = get_logger(__name__)

_STATUS_CODES = {
    "success": 200,
    "partial": 200,
    "skipped": 200,
    "failed": 500,
}


def handler(event: dict[str, Any], context: Any) -> dict[str, Any]:
    """
    Lambda handler for a scheduled day-run.

    Expected event format:
    {
        "job_id": "photos",
        "root_path": "/mnt/photos",  # optional, defaults to the job's root
        "day_key": "photos-20240131"  # optional, defaults to <root>-<YYYYMMDD>
    }

    Environment variables:
    - S3_BUCKET: S3 bucket name
    - AWS_REGION: AWS region (optional, defaults to us-east-1)
    - DYNAMODB_LOCK_TABLE: DynamoDB table for run locks (optional)
    - ENV: Environment name (local, staging, production) - optional, defaults to local

    Returns:
        {
            "statusCode": 200,
            "body": {
                "job_id": "...",
                "run_id": "...",
                "day_key": "...",
                "status": "success",
                "summary": {...}
            }
        }
    """
    try:
        job_id = event.get("job_id")
        if not job_id:
            return {
                "statusCode": 400,
                "body": json.dumps({"error": "job_id is required"}),
            }

        logger.info("Starting backup for job: %s", job_id)

        app_config = load_app_config()
        logger.info("Configuration loaded: s3_bucket=%s", app_config.s3_bucket)
        job = load_job_config(job_id)

        run_result = run_day(
            job,
            app_config,
            root_path=event.get("root_path"),
            day_key=event.get("day_key"),
        )

        result = run_result.model_dump(mode="json")
        logger.info("Backup finished: %s", json.dumps(result))

        return {
            "statusCode": _STATUS_CODES[run_result.status.value],
            "body": json.dumps(result),
        }

    except ConfigError as e:
        logger.error("Config error: %s", e)
        return {
            "statusCode": 404,
            "body": json.dumps({"error": str(e)}),
        }
    except ManifestConflict as e:
        logger.error("Manifest conflict: %s", e)
        return {
            "statusCode": 409,
            "body": json.dumps({"error": str(e), "kind": "ManifestConflict"}),
        }
    except BackupError as e:
        logger.exception("Backup failed: %s", e)
        return {
            "statusCode": 500,
            "body": json.dumps({"error": str(e), "kind": type(e).__name__}),
        }
    except Exception as e:
        logger.exception("Backup crashed: %s", e)
        return {
            "statusCode": 500,
            "body": json.dumps({"error": str(e)}),
        }
