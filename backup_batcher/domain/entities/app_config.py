"""Application configuration entity."""
from pydantic import BaseModel


class AppConfig(BaseModel):
    """Application configuration for runtime environment."""
    s3_bucket: str
    aws_region: str | None = None
    dynamodb_lock_table: str | None = None
    """DynamoDB table name for per-day run locks."""
    staging_dir: str = ".backup-staging"
    """Local directory where manifests are staged before the remote commit."""
