"""Local environment configuration."""
import os
from backup_batcher.domain.entities.app_config import AppConfig

config = AppConfig(
    s3_bucket=os.getenv("S3_BUCKET", "backup-batcher-local"),
    aws_region=os.getenv("AWS_DEFAULT_REGION", "us-east-1"),
    dynamodb_lock_table=os.getenv("DYNAMODB_LOCK_TABLE"),
    staging_dir=os.getenv("STAGING_DIR", ".backup-staging"),
)
