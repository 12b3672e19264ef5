"""Provisioning module: S3, IAM and Lambda wiring for one function.

Public API:
    LambdaStack(settings, clients).synth(asset, config) -> dict
    LambdaStack(settings, clients).apply(asset, config) -> StackOutputs
    LambdaStack(settings, clients).destroy() -> None
    create_clients(settings) -> AwsClients
"""

from deployer.provisioning.clients import AwsClients, create_clients
from deployer.provisioning.stack import LambdaStack
from deployer.provisioning.state import StackState, StateError, StateStore
from deployer.provisioning.types import ProvisioningError, StackOutputs

__all__ = [
    "LambdaStack",
    "AwsClients",
    "create_clients",
    "StackState",
    "StateError",
    "StateStore",
    "ProvisioningError",
    "StackOutputs",
]
