"""Lambda stack: wires a packaged archive into a public Lambda function.

Resources, in dependency order:
  1. S3 bucket (name = bucket_prefix + random suffix, remembered in state)
  2. S3 object holding the archive, key "<archive file name>/<version>"
  3. IAM execution role trusting lambda.amazonaws.com
  4. AWSLambdaBasicExecutionRole attached to the role
  5. Lambda function reading its code from the S3 object
  6. Permission letting anyone invoke the Function URL
  7. Function URL with AuthType NONE

`apply()` is an ensure-sequence: each step reuses what already exists
and only creates or updates what is missing or has drifted, so running
it twice with the same archive and version makes no changes the second
time. `synth()` renders the same stack as a declarative document
without calling AWS.

Only the "not found" / "already exists" error codes of each call are
tolerated; every other AWS error aborts the run as a ProvisioningError.
"""

import logging
import time
import uuid
from typing import Optional

from boto3.exceptions import S3UploadFailedError
from botocore.exceptions import ClientError, WaiterError

from deployer.core.config import DeploymentConfig, Settings
from deployer.packaging.types import ArchiveDescriptor
from deployer.provisioning.clients import AwsClients
from deployer.provisioning.policies import (
    BASIC_EXECUTION_POLICY_ARN,
    FUNCTION_URL_ACTION,
    FUNCTION_URL_AUTH_TYPE,
    FUNCTION_URL_STATEMENT_ID,
    assume_role_policy_document,
)
from deployer.provisioning.state import StackState, StateStore
from deployer.provisioning.types import ProvisioningError, StackOutputs, error_code

logger = logging.getLogger(__name__)

_BUCKET_NAME_MAX = 63
_BUCKET_SUFFIX_LEN = 20

_BUCKET_MISSING_CODES = {"404", "NoSuchBucket", "NotFound"}
_OBJECT_MISSING_CODES = {"404", "NoSuchKey", "NotFound"}
_IAM_MISSING_CODES = {"NoSuchEntity"}
_LAMBDA_MISSING_CODES = {"ResourceNotFoundException"}
_LAMBDA_CONFLICT_CODES = {"ResourceConflictException"}


def _is_role_propagation_error(exc: ClientError) -> bool:
    """True when Lambda rejected a role that IAM has not finished propagating."""
    if error_code(exc) != "InvalidParameterValueException":
        return False
    message = exc.response.get("Error", {}).get("Message", "").lower()
    return "role" in message and ("assume" in message or "cannot be" in message)


class LambdaStack:
    """A single public Lambda function backed by an S3-hosted archive."""

    def __init__(
        self,
        settings: Settings,
        clients: AwsClients,
        state_store: Optional[StateStore] = None,
    ):
        self.settings = settings
        self.clients = clients
        self.state_store = state_store or StateStore(settings.state_dir, settings.stack_name)

    # ------------------------------------------------------------------
    # Declarative view
    # ------------------------------------------------------------------

    def synth(self, asset: ArchiveDescriptor, config: DeploymentConfig) -> dict:
        """Render the stack as a Terraform-JSON-shaped document."""
        s = self.settings
        return {
            "provider": {"aws": [{"region": s.aws_region}]},
            "resource": {
                "aws_s3_bucket": {
                    "bucket": {"bucket_prefix": s.bucket_prefix},
                },
                "aws_s3_object": {
                    "lambda-archive": {
                        "bucket": "${aws_s3_bucket.bucket.bucket}",
                        "key": asset.object_key(config.version),
                        "source": str(asset.content_path),
                        "source_hash": asset.asset_hash,
                    },
                },
                "aws_iam_role": {
                    "lambda-exec": {
                        "name": s.resolved_role_name,
                        "assume_role_policy": assume_role_policy_document(),
                    },
                },
                "aws_iam_role_policy_attachment": {
                    "lambda-managed-policy": {
                        "policy_arn": BASIC_EXECUTION_POLICY_ARN,
                        "role": "${aws_iam_role.lambda-exec.name}",
                    },
                },
                "aws_lambda_function": {
                    "function": {
                        "function_name": s.function_name,
                        "s3_bucket": "${aws_s3_bucket.bucket.bucket}",
                        "s3_key": "${aws_s3_object.lambda-archive.key}",
                        "handler": s.lambda_handler,
                        "runtime": s.lambda_runtime,
                        "memory_size": s.lambda_memory_mb,
                        "timeout": s.lambda_timeout_seconds,
                        "role": "${aws_iam_role.lambda-exec.arn}",
                    },
                },
                "aws_lambda_permission": {
                    "lambda-allow-public-access": {
                        "statement_id": FUNCTION_URL_STATEMENT_ID,
                        "principal": "*",
                        "action": FUNCTION_URL_ACTION,
                        "function_name": "${aws_lambda_function.function.function_name}",
                        "function_url_auth_type": FUNCTION_URL_AUTH_TYPE,
                    },
                },
                "aws_lambda_function_url": {
                    "function-url": {
                        "authorization_type": FUNCTION_URL_AUTH_TYPE,
                        "function_name": "${aws_lambda_function.function.function_name}",
                    },
                },
            },
            "output": {
                "lambda-url": {
                    "value": "${aws_lambda_function_url.function-url.function_url}",
                },
            },
        }

    # ------------------------------------------------------------------
    # Apply
    # ------------------------------------------------------------------

    def apply(self, asset: ArchiveDescriptor, config: DeploymentConfig) -> StackOutputs:
        """Create or update every resource so the function serves `asset`."""
        state = self.state_store.load() or StackState(
            stack_name=self.settings.stack_name,
            region=self.settings.aws_region,
        )
        object_key = asset.object_key(config.version)
        deployed_code = (state.bucket, state.object_key)

        bucket = self._ensure_bucket(state.bucket)
        state.bucket = bucket
        # Persist early so a later failure does not orphan the bucket.
        self.state_store.save(state)

        self._ensure_object(bucket, object_key, asset)

        role_name = self.settings.resolved_role_name
        role_arn, role_created = self._ensure_role(role_name)
        self._attach_policy(role_name)
        state.role_name = role_name
        state.role_arn = role_arn
        self.state_store.save(state)

        function_arn = self._ensure_function(
            bucket, object_key, deployed_code != (bucket, object_key), role_arn, role_created,
        )
        state.function_name = self.settings.function_name
        state.function_arn = function_arn
        state.object_key = object_key
        state.asset_hash = asset.asset_hash

        self._ensure_public_permission()
        function_url = self._ensure_function_url()
        state.function_url = function_url
        self.state_store.save(state)

        outputs = StackOutputs(
            bucket=bucket,
            object_key=object_key,
            role_arn=role_arn,
            function_name=self.settings.function_name,
            function_arn=function_arn,
            function_url=function_url,
        )
        logger.info("Stack %s applied: %s", self.settings.stack_name, function_url)
        return outputs

    def outputs(self) -> Optional[StackOutputs]:
        """Return outputs recorded by the last apply, without calling AWS."""
        state = self.state_store.load()
        if state is None or not state.function_url:
            return None
        return StackOutputs(
            bucket=state.bucket or "",
            object_key=state.object_key or "",
            role_arn=state.role_arn or "",
            function_name=state.function_name or "",
            function_arn=state.function_arn or "",
            function_url=state.function_url,
        )

    def _new_bucket_name(self) -> str:
        prefix = self.settings.bucket_prefix.lower()
        if len(prefix) > _BUCKET_NAME_MAX - _BUCKET_SUFFIX_LEN:
            raise ProvisioningError(
                "bucket",
                f"bucket_prefix {prefix!r} is too long "
                f"(max {_BUCKET_NAME_MAX - _BUCKET_SUFFIX_LEN} characters)",
            )
        return f"{prefix}{uuid.uuid4().hex[:_BUCKET_SUFFIX_LEN]}"

    def _ensure_bucket(self, known_bucket: Optional[str]) -> str:
        s3 = self.clients.s3
        if known_bucket:
            try:
                s3.head_bucket(Bucket=known_bucket)
                logger.info("Reusing bucket %s", known_bucket)
                return known_bucket
            except ClientError as exc:
                if error_code(exc) not in _BUCKET_MISSING_CODES:
                    raise ProvisioningError.from_client_error("bucket", exc) from exc
                logger.warning("Bucket %s from state no longer exists; recreating", known_bucket)

        bucket = self._new_bucket_name()
        kwargs: dict = {"Bucket": bucket}
        # us-east-1 rejects an explicit LocationConstraint
        if self.clients.region != "us-east-1":
            kwargs["CreateBucketConfiguration"] = {"LocationConstraint": self.clients.region}
        try:
            s3.create_bucket(**kwargs)
        except ClientError as exc:
            raise ProvisioningError.from_client_error("bucket", exc) from exc
        logger.info("Created bucket %s", bucket)
        return bucket

    def _ensure_object(self, bucket: str, key: str, asset: ArchiveDescriptor) -> None:
        s3 = self.clients.s3
        try:
            s3.head_object(Bucket=bucket, Key=key)
            # Keys embed the content hash, so an existing key already holds these bytes.
            logger.info("Archive s3://%s/%s already uploaded", bucket, key)
            return
        except ClientError as exc:
            if error_code(exc) not in _OBJECT_MISSING_CODES:
                raise ProvisioningError.from_client_error("object", exc) from exc

        try:
            s3.upload_file(str(asset.content_path), bucket, key)
        except S3UploadFailedError as exc:
            # The transfer manager re-raises the underlying ClientError as text only.
            raise ProvisioningError("object", str(exc)) from exc
        except ClientError as exc:
            raise ProvisioningError.from_client_error("object", exc) from exc
        logger.info("Uploaded %s to s3://%s/%s", asset.content_path, bucket, key)

    def _ensure_role(self, role_name: str) -> tuple[str, bool]:
        """Return (role ARN, created) for the execution role."""
        iam = self.clients.iam
        try:
            response = iam.get_role(RoleName=role_name)
            return response["Role"]["Arn"], False
        except ClientError as exc:
            if error_code(exc) not in _IAM_MISSING_CODES:
                raise ProvisioningError.from_client_error("role", exc) from exc

        try:
            response = iam.create_role(
                RoleName=role_name,
                AssumeRolePolicyDocument=assume_role_policy_document(),
            )
        except ClientError as exc:
            raise ProvisioningError.from_client_error("role", exc) from exc
        logger.info("Created role %s", role_name)
        return response["Role"]["Arn"], True

    def _attach_policy(self, role_name: str) -> None:
        try:
            self.clients.iam.attach_role_policy(
                RoleName=role_name,
                PolicyArn=BASIC_EXECUTION_POLICY_ARN,
            )
        except ClientError as exc:
            raise ProvisioningError.from_client_error("policy", exc) from exc

    def _function_definition(self, role_arn: str) -> dict:
        s = self.settings
        return {
            "Handler": s.lambda_handler,
            "Runtime": s.lambda_runtime,
            "Role": role_arn,
            "MemorySize": s.lambda_memory_mb,
            "Timeout": s.lambda_timeout_seconds,
        }

    def _ensure_function(
        self,
        bucket: str,
        object_key: str,
        code_changed: bool,
        role_arn: str,
        role_created: bool,
    ) -> str:
        lambda_ = self.clients.lambda_
        name = self.settings.function_name
        try:
            current = lambda_.get_function(FunctionName=name)["Configuration"]
        except ClientError as exc:
            if error_code(exc) not in _LAMBDA_MISSING_CODES:
                raise ProvisioningError.from_client_error("function", exc) from exc
            current = None

        if current is None:
            return self._create_function(bucket, object_key, role_arn, role_created)

        try:
            if code_changed or current.get("LastUpdateStatus") == "Failed":
                lambda_.update_function_code(
                    FunctionName=name, S3Bucket=bucket, S3Key=object_key,
                )
                self._wait_for_function("function_updated_v2")
                logger.info("Updated code of %s to %s", name, object_key)

            desired = self._function_definition(role_arn)
            drift = {k: v for k, v in desired.items() if current.get(k) != v}
            if drift:
                lambda_.update_function_configuration(FunctionName=name, **desired)
                self._wait_for_function("function_updated_v2")
                logger.info("Updated configuration of %s: %s", name, sorted(drift))
        except ClientError as exc:
            raise ProvisioningError.from_client_error("function", exc) from exc

        return current["FunctionArn"]

    def _create_function(
        self,
        bucket: str,
        object_key: str,
        role_arn: str,
        role_created: bool,
    ) -> str:
        lambda_ = self.clients.lambda_
        name = self.settings.function_name
        attempts = self.settings.role_propagation_attempts if role_created else 1
        attempts = max(attempts, 1)

        for attempt in range(1, attempts + 1):
            try:
                response = lambda_.create_function(
                    FunctionName=name,
                    Code={"S3Bucket": bucket, "S3Key": object_key},
                    **self._function_definition(role_arn),
                )
                break
            except ClientError as exc:
                if attempt < attempts and _is_role_propagation_error(exc):
                    logger.info(
                        "Role not assumable yet (attempt %d/%d); waiting %.1fs",
                        attempt, attempts, self.settings.role_propagation_delay_seconds,
                    )
                    time.sleep(self.settings.role_propagation_delay_seconds)
                    continue
                raise ProvisioningError.from_client_error("function", exc) from exc

        self._wait_for_function("function_active_v2")
        logger.info("Created function %s", name)
        return response["FunctionArn"]

    def _wait_for_function(self, waiter_name: str) -> None:
        try:
            self.clients.lambda_.get_waiter(waiter_name).wait(
                FunctionName=self.settings.function_name,
            )
        except WaiterError as exc:
            raise ProvisioningError.from_waiter_error("function", exc) from exc

    def _ensure_public_permission(self) -> None:
        try:
            self.clients.lambda_.add_permission(
                FunctionName=self.settings.function_name,
                StatementId=FUNCTION_URL_STATEMENT_ID,
                Action=FUNCTION_URL_ACTION,
                Principal="*",
                FunctionUrlAuthType=FUNCTION_URL_AUTH_TYPE,
            )
            logger.info("Granted public Function URL access")
        except ClientError as exc:
            if error_code(exc) not in _LAMBDA_CONFLICT_CODES:
                raise ProvisioningError.from_client_error("permission", exc) from exc

    def _ensure_function_url(self) -> str:
        lambda_ = self.clients.lambda_
        name = self.settings.function_name
        try:
            return lambda_.get_function_url_config(FunctionName=name)["FunctionUrl"]
        except ClientError as exc:
            if error_code(exc) not in _LAMBDA_MISSING_CODES:
                raise ProvisioningError.from_client_error("function_url", exc) from exc

        try:
            response = lambda_.create_function_url_config(
                FunctionName=name,
                AuthType=FUNCTION_URL_AUTH_TYPE,
            )
        except ClientError as exc:
            raise ProvisioningError.from_client_error("function_url", exc) from exc
        logger.info("Created Function URL %s", response["FunctionUrl"])
        return response["FunctionUrl"]

    # ------------------------------------------------------------------
    # Destroy
    # ------------------------------------------------------------------

    def destroy(self) -> None:
        """Delete every resource recorded in state, then the state itself."""
        state = self.state_store.load()
        if state is None:
            logger.info("No state for stack %s; nothing to destroy", self.settings.stack_name)
            return

        function_name = state.function_name or self.settings.function_name
        self._ignore_missing(
            "function_url", _LAMBDA_MISSING_CODES,
            self.clients.lambda_.delete_function_url_config, FunctionName=function_name,
        )
        self._ignore_missing(
            "function", _LAMBDA_MISSING_CODES,
            self.clients.lambda_.delete_function, FunctionName=function_name,
        )

        if state.role_name:
            self._ignore_missing(
                "policy", _IAM_MISSING_CODES,
                self.clients.iam.detach_role_policy,
                RoleName=state.role_name, PolicyArn=BASIC_EXECUTION_POLICY_ARN,
            )
            self._ignore_missing(
                "role", _IAM_MISSING_CODES,
                self.clients.iam.delete_role, RoleName=state.role_name,
            )

        if state.bucket:
            self._empty_bucket(state.bucket)
            self._ignore_missing(
                "bucket", _BUCKET_MISSING_CODES,
                self.clients.s3.delete_bucket, Bucket=state.bucket,
            )

        self.state_store.clear()
        logger.info("Stack %s destroyed", self.settings.stack_name)

    def _empty_bucket(self, bucket: str) -> None:
        s3 = self.clients.s3
        try:
            paginator = s3.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=bucket):
                keys = [{"Key": obj["Key"]} for obj in page.get("Contents", [])]
                if keys:
                    s3.delete_objects(Bucket=bucket, Delete={"Objects": keys, "Quiet": True})
        except ClientError as exc:
            if error_code(exc) in _BUCKET_MISSING_CODES:
                return
            raise ProvisioningError.from_client_error("object", exc) from exc

    @staticmethod
    def _ignore_missing(step: str, missing_codes: set, call, **kwargs) -> None:
        try:
            call(**kwargs)
            logger.info("Deleted %s", step)
        except ClientError as exc:
            if error_code(exc) not in missing_codes:
                raise ProvisioningError.from_client_error(step, exc) from exc
            logger.info("%s already gone", step)
