"""Centralized configuration loading."""
import os
import yaml
import importlib
from pathlib import Path
from typing import Optional
from dotenv import load_dotenv
from pydantic import ValidationError

from backup_batcher.domain.entities.app_config import AppConfig
from backup_batcher.domain.entities.job_config import BackupJobConfig
from backup_batcher.infra.common.errors import ConfigError

ENVIRONMENTS = ("local", "staging", "production")


def _load_env_file() -> None:
    """Load environment variables from .env file if it exists."""
    if os.getenv("AWS_LAMBDA_FUNCTION_NAME") or os.getenv("ECS_CONTAINER_METADATA_URI"):
        return
    
    env_path = Path(__file__).parent.parent.parent.parent / ".env"
    if env_path.exists():
        load_dotenv(env_path, override=True)
    else:
        load_dotenv(override=True)


def load_app_config(env: Optional[str] = None) -> AppConfig:
    """
    Load application configuration for environment.
    
    Args:
        env: Environment name (local, staging, production). 
             If None, reads from ENV environment variable.
        
    Returns:
        AppConfig instance
        
    Raises:
        ConfigError: If config module not found or invalid
    """
    _load_env_file()
    
    if env is None:
        env = os.getenv("ENV", "local")
    
    if env not in ENVIRONMENTS:
        raise ConfigError(f"Invalid environment: {env}. Must be one of: {', '.join(ENVIRONMENTS)}")
    
    module_name = f"config.appconfig.{env}"
    try:
        config_module = importlib.import_module(module_name)
    except ImportError as e:
        raise ConfigError(f"Config module not found: {module_name}") from e
    return config_module.config


def _find_job_config(job_id: str) -> str:
    local_path = Path("config/jobs") / f"{job_id}.yml"
    if local_path.exists():
        return str(local_path)

    import backup_batcher
    package_root = Path(backup_batcher.__file__).parent.parent
    absolute_path = package_root / "config" / "jobs" / f"{job_id}.yml"
    if absolute_path.exists():
        return str(absolute_path)

    raise ConfigError(
        f"Config not found for job '{job_id}'. "
        f"Tried: {local_path} and {absolute_path}."
    )


def load_job_config(job_id: str, config_path: Optional[str] = None) -> BackupJobConfig:
    """
    Load backup job configuration from YAML.
    
    The file may hold a single job mapping or a list of jobs; in the latter
    case the entry whose `job_id` matches is used.
    
    Args:
        job_id: Job identifier
        config_path: Optional path to config file. If None, looks in config/jobs/ directory.
        
    Returns:
        Validated BackupJobConfig
        
    Raises:
        ConfigError: If config file is not found or invalid
    """
    if config_path is None:
        config_path = _find_job_config(job_id)
    
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except FileNotFoundError as e:
        raise ConfigError(f"Config file not found: {config_path}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in config file: {config_path}") from e
    
    if isinstance(data, list):
        job_data = None
        for item in data:
            if isinstance(item, dict) and item.get("job_id") == job_id:
                job_data = item
                break
        if job_data is None:
            raise ConfigError(f"Job {job_id} not found in config file")
        data = job_data
    
    if not isinstance(data, dict):
        raise ConfigError(f"Invalid job config in {config_path}: expected a mapping")
    
    try:
        return BackupJobConfig(**data)
    except ValidationError as e:
        raise ConfigError(f"Invalid job config: {e}") from e
