"""Types for the provisioning module."""

from dataclasses import asdict, dataclass
from typing import Optional

from botocore.exceptions import ClientError, WaiterError


@dataclass
class StackOutputs:
    """Identifiers of the deployed resources.

    function_url is the public, unauthenticated HTTPS endpoint.
    """

    bucket: str
    object_key: str
    role_arn: str
    function_name: str
    function_arn: str
    function_url: str

    def to_dict(self) -> dict:
        return asdict(self)


class ProvisioningError(Exception):
    """Raised when an AWS call fails during apply or destroy.

    step names the resource being provisioned ("bucket", "role", ...);
    error_code is the AWS error code when the failure came from botocore.
    """

    def __init__(self, step: str, message: str, error_code: Optional[str] = None):
        self.step = step
        self.error_code = error_code
        super().__init__(f"[{step}] {message}")

    @classmethod
    def from_client_error(cls, step: str, exc: ClientError) -> "ProvisioningError":
        return cls(step, str(exc), error_code=error_code(exc))

    @classmethod
    def from_waiter_error(cls, step: str, exc: WaiterError) -> "ProvisioningError":
        """Wrap a waiter failure, keeping the reason from its last response.

        Lambda's function waiters poll GetFunctionConfiguration, so a
        terminal "Failed" state carries StateReason / LastUpdateStatusReason
        alongside their reason codes.
        """
        last = exc.last_response or {}
        config = last.get("Configuration", last)
        code = (
            last.get("Error", {}).get("Code")
            or config.get("LastUpdateStatusReasonCode")
            or config.get("StateReasonCode")
        )
        reason = config.get("LastUpdateStatusReason") or config.get("StateReason")
        message = str(exc)
        if reason:
            message = f"{message}: {reason}"
        return cls(step, message, error_code=code)


def error_code(exc: ClientError) -> str:
    """Return the AWS error code carried by a botocore ClientError."""
    return exc.response.get("Error", {}).get("Code", "")
