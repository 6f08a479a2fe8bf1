"""
AWS Session Factory

Creates boto3 sessions and clients through the default credential chain
(IAM role, environment, shared config). Explicit keys are never read from
application settings.
"""

from typing import Optional, Any

import boto3
from botocore.config import Config
import structlog

logger = structlog.get_logger(__name__)

DEFAULT_AWS_REGION = "us-east-1"


def create_aws_session(
    region_name: Optional[str] = None,
    profile_name: Optional[str] = None,
) -> boto3.Session:
    """
    Create an AWS session using the default credential chain.

    Args:
        region_name: AWS region (defaults to us-east-1)
        profile_name: Optional AWS profile name for local development
    """
    session_kwargs = {"region_name": region_name or DEFAULT_AWS_REGION}
    if profile_name:
        session_kwargs["profile_name"] = profile_name

    session = boto3.Session(**session_kwargs)

    logger.debug(
        "aws_session_created",
        region=session_kwargs["region_name"],
        profile=profile_name,
    )

    return session


def create_aws_client(
    service_name: str,
    region_name: Optional[str] = None,
    config: Optional[Config] = None,
) -> Any:
    """
    Create an AWS service client using the default credential chain.

    Example:
        athena = create_aws_client('athena', config=get_default_retry_config())
        ses = create_aws_client('ses', region_name='eu-west-1')
    """
    session = create_aws_session(region_name=region_name)

    client_kwargs = {}
    if config:
        client_kwargs["config"] = config

    return session.client(service_name, **client_kwargs)


def get_default_retry_config(
    region_name: Optional[str] = None,
    max_attempts: int = 3,
    mode: str = "adaptive",
    max_pool_connections: int = 20,
) -> Config:
    """Standard botocore Config with adaptive retries and a bounded pool."""
    return Config(
        region_name=region_name or DEFAULT_AWS_REGION,
        retries={
            "max_attempts": max_attempts,
            "mode": mode,
        },
        max_pool_connections=max_pool_connections,
    )
