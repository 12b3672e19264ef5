"""AWS service clients for provisioning.

Credentials come from the default boto3 chain (environment, shared
config/profile, SSO, instance role). Nothing here accepts explicit keys.
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional

import boto3
from botocore.config import Config

from deployer.core.config import Settings

logger = logging.getLogger(__name__)


def get_boto3_config() -> Config:
    """Get boto3 configuration with retries and timeouts."""
    return Config(
        retries={
            "max_attempts": 5,
            "mode": "standard",
        },
        connect_timeout=10,
        read_timeout=60,
    )


@dataclass
class AwsClients:
    """The three service clients the Lambda stack talks to."""

    s3: Any
    iam: Any
    lambda_: Any
    region: str


def create_clients(settings: Settings, session: Optional[boto3.Session] = None) -> AwsClients:
    """Create S3, IAM and Lambda clients for the configured region."""
    session = session or boto3.Session(region_name=settings.aws_region)
    config = get_boto3_config()
    logger.debug("Creating AWS clients for region %s", settings.aws_region)
    return AwsClients(
        s3=session.client("s3", region_name=settings.aws_region, config=config),
        iam=session.client("iam", config=config),
        lambda_=session.client("lambda", region_name=settings.aws_region, config=config),
        region=settings.aws_region,
    )
