"""Unit tests for LambdaStack.

All three AWS clients are MagicMocks. "Missing" resources are simulated
by raising botocore ClientErrors with the codes AWS actually returns.
"""

import json
from unittest.mock import MagicMock

import pytest
from boto3.exceptions import S3UploadFailedError
from botocore.exceptions import WaiterError

from deployer.packaging.types import ArchiveDescriptor
from deployer.provisioning.clients import AwsClients
from deployer.provisioning.policies import (
    BASIC_EXECUTION_POLICY_ARN,
    FUNCTION_URL_STATEMENT_ID,
    LAMBDA_ASSUME_ROLE_POLICY,
)
from deployer.provisioning.stack import LambdaStack
from deployer.provisioning.state import StackState
from deployer.provisioning.types import ProvisioningError
from tests.conftest import client_error

FUNCTION_URL = "https://abc123.lambda-url.ap-south-1.on.aws/"
ROLE_ARN = "arn:aws:iam::123456789012:role/test-stack-lambda-exec"
FUNCTION_ARN = "arn:aws:lambda:ap-south-1:123456789012:function:test-fn"


@pytest.fixture
def clients() -> AwsClients:
    return AwsClients(s3=MagicMock(), iam=MagicMock(), lambda_=MagicMock(), region="ap-south-1")


@pytest.fixture
def asset(tmp_path) -> ArchiveDescriptor:
    archive = tmp_path / "deadbeef.zip"
    archive.write_bytes(b"PK")
    return ArchiveDescriptor(
        content_path=archive,
        file_name="deadbeef.zip",
        asset_hash="deadbeef",
        source_directory=tmp_path,
    )


@pytest.fixture
def stack(settings, clients) -> LambdaStack:
    return LambdaStack(settings, clients)


def _fresh_account(clients: AwsClients) -> None:
    """Configure the mocks so that nothing exists yet."""
    clients.s3.head_object.side_effect = client_error("404")
    clients.iam.get_role.side_effect = client_error("NoSuchEntity")
    clients.iam.create_role.return_value = {"Role": {"Arn": ROLE_ARN}}
    clients.lambda_.get_function.side_effect = client_error("ResourceNotFoundException")
    clients.lambda_.create_function.return_value = {"FunctionArn": FUNCTION_ARN}
    clients.lambda_.get_function_url_config.side_effect = client_error("ResourceNotFoundException")
    clients.lambda_.create_function_url_config.return_value = {"FunctionUrl": FUNCTION_URL}


def _deployed_account(clients: AwsClients, settings, **config_overrides) -> None:
    """Configure the mocks so that every resource already exists."""
    configuration = {
        "FunctionArn": FUNCTION_ARN,
        "Handler": settings.lambda_handler,
        "Runtime": settings.lambda_runtime,
        "Role": ROLE_ARN,
        "MemorySize": settings.lambda_memory_mb,
        "Timeout": settings.lambda_timeout_seconds,
        "LastUpdateStatus": "Successful",
    }
    configuration.update(config_overrides)
    clients.s3.head_bucket.return_value = {}
    clients.s3.head_object.return_value = {}
    clients.iam.get_role.return_value = {"Role": {"Arn": ROLE_ARN}}
    clients.lambda_.get_function.return_value = {"Configuration": configuration}
    clients.lambda_.add_permission.side_effect = client_error("ResourceConflictException")
    clients.lambda_.get_function_url_config.return_value = {"FunctionUrl": FUNCTION_URL}


def _save_state(stack: LambdaStack, **fields) -> None:
    state = StackState(
        stack_name="test-stack",
        region="ap-south-1",
        bucket="test-bucket-existing",
        object_key="deadbeef.zip/0.0.5",
        role_name="test-stack-lambda-exec",
        role_arn=ROLE_ARN,
        function_name="test-fn",
        function_arn=FUNCTION_ARN,
        function_url=FUNCTION_URL,
    )
    for key, value in fields.items():
        setattr(state, key, value)
    stack.state_store.save(state)


class TestApplyFresh:
    def test_creates_every_resource(self, stack, clients, asset, deployment_config):
        _fresh_account(clients)

        outputs = stack.apply(asset, deployment_config)

        assert outputs.function_url == FUNCTION_URL
        assert outputs.object_key == "deadbeef.zip/0.0.5"
        assert outputs.role_arn == ROLE_ARN
        assert outputs.function_arn == FUNCTION_ARN
        clients.s3.create_bucket.assert_called_once()
        clients.s3.upload_file.assert_called_once_with(
            str(asset.content_path), outputs.bucket, "deadbeef.zip/0.0.5",
        )
        clients.iam.create_role.assert_called_once()
        clients.lambda_.create_function.assert_called_once()
        clients.lambda_.create_function_url_config.assert_called_once_with(
            FunctionName="test-fn", AuthType="NONE",
        )

    def test_bucket_name_uses_prefix(self, stack, clients, asset, deployment_config):
        _fresh_account(clients)

        outputs = stack.apply(asset, deployment_config)

        assert outputs.bucket.startswith("test-bucket-")
        assert len(outputs.bucket) <= 63
        kwargs = clients.s3.create_bucket.call_args[1]
        assert kwargs["CreateBucketConfiguration"] == {"LocationConstraint": "ap-south-1"}

    def test_us_east_1_has_no_location_constraint(self, settings, asset, deployment_config):
        clients = AwsClients(s3=MagicMock(), iam=MagicMock(), lambda_=MagicMock(), region="us-east-1")
        _fresh_account(clients)

        LambdaStack(settings, clients).apply(asset, deployment_config)

        assert "CreateBucketConfiguration" not in clients.s3.create_bucket.call_args[1]

    def test_role_trust_policy_and_managed_policy(self, stack, clients, asset, deployment_config):
        _fresh_account(clients)

        stack.apply(asset, deployment_config)

        create_kwargs = clients.iam.create_role.call_args[1]
        assert create_kwargs["RoleName"] == "test-stack-lambda-exec"
        assert json.loads(create_kwargs["AssumeRolePolicyDocument"]) == LAMBDA_ASSUME_ROLE_POLICY
        clients.iam.attach_role_policy.assert_called_once_with(
            RoleName="test-stack-lambda-exec",
            PolicyArn=BASIC_EXECUTION_POLICY_ARN,
        )

    def test_function_definition(self, stack, clients, asset, deployment_config, settings):
        _fresh_account(clients)

        outputs = stack.apply(asset, deployment_config)

        kwargs = clients.lambda_.create_function.call_args[1]
        assert kwargs["FunctionName"] == "test-fn"
        assert kwargs["Handler"] == "index.handler"
        assert kwargs["Runtime"] == settings.lambda_runtime
        assert kwargs["Role"] == ROLE_ARN
        assert kwargs["Code"] == {"S3Bucket": outputs.bucket, "S3Key": "deadbeef.zip/0.0.5"}
        clients.lambda_.get_waiter.assert_any_call("function_active_v2")

    def test_public_permission(self, stack, clients, asset, deployment_config):
        _fresh_account(clients)

        stack.apply(asset, deployment_config)

        clients.lambda_.add_permission.assert_called_once_with(
            FunctionName="test-fn",
            StatementId=FUNCTION_URL_STATEMENT_ID,
            Action="lambda:InvokeFunctionUrl",
            Principal="*",
            FunctionUrlAuthType="NONE",
        )

    def test_state_is_saved(self, stack, clients, asset, deployment_config):
        _fresh_account(clients)

        outputs = stack.apply(asset, deployment_config)

        state = stack.state_store.load()
        assert state.bucket == outputs.bucket
        assert state.object_key == "deadbeef.zip/0.0.5"
        assert state.asset_hash == "deadbeef"
        assert state.function_url == FUNCTION_URL


class TestApplyExisting:
    def test_second_apply_changes_nothing(self, stack, clients, asset, deployment_config, settings):
        _save_state(stack)
        _deployed_account(clients, settings)

        outputs = stack.apply(asset, deployment_config)

        assert outputs.bucket == "test-bucket-existing"
        assert outputs.function_url == FUNCTION_URL
        clients.s3.create_bucket.assert_not_called()
        clients.s3.upload_file.assert_not_called()
        clients.iam.create_role.assert_not_called()
        clients.lambda_.create_function.assert_not_called()
        clients.lambda_.update_function_code.assert_not_called()
        clients.lambda_.update_function_configuration.assert_not_called()
        clients.lambda_.create_function_url_config.assert_not_called()

    def test_new_version_updates_code(self, stack, clients, asset, deployment_config, settings):
        _save_state(stack, object_key="deadbeef.zip/0.0.4")
        _deployed_account(clients, settings)
        clients.s3.head_object.side_effect = client_error("404")

        stack.apply(asset, deployment_config)

        clients.s3.upload_file.assert_called_once()
        clients.lambda_.update_function_code.assert_called_once_with(
            FunctionName="test-fn",
            S3Bucket="test-bucket-existing",
            S3Key="deadbeef.zip/0.0.5",
        )
        clients.lambda_.get_waiter.assert_any_call("function_updated_v2")
        assert stack.state_store.load().object_key == "deadbeef.zip/0.0.5"

    def test_configuration_drift_is_corrected(self, stack, clients, asset, deployment_config, settings):
        _save_state(stack)
        _deployed_account(clients, settings, Handler="main.handler")

        stack.apply(asset, deployment_config)

        clients.lambda_.update_function_code.assert_not_called()
        kwargs = clients.lambda_.update_function_configuration.call_args[1]
        assert kwargs["Handler"] == "index.handler"

    def test_deleted_bucket_is_recreated(self, stack, clients, asset, deployment_config, settings):
        _save_state(stack)
        _deployed_account(clients, settings)
        clients.s3.head_bucket.side_effect = client_error("404")
        clients.s3.head_object.side_effect = client_error("404")

        outputs = stack.apply(asset, deployment_config)

        clients.s3.create_bucket.assert_called_once()
        assert outputs.bucket != "test-bucket-existing"
        clients.lambda_.update_function_code.assert_called_once_with(
            FunctionName="test-fn", S3Bucket=outputs.bucket, S3Key="deadbeef.zip/0.0.5",
        )


class TestRolePropagation:
    def test_retries_while_new_role_propagates(self, stack, clients, asset, deployment_config):
        _fresh_account(clients)
        clients.lambda_.create_function.side_effect = [
            client_error(
                "InvalidParameterValueException",
                "The role defined for the function cannot be assumed by Lambda.",
            ),
            {"FunctionArn": FUNCTION_ARN},
        ]

        outputs = stack.apply(asset, deployment_config)

        assert outputs.function_arn == FUNCTION_ARN
        assert clients.lambda_.create_function.call_count == 2

    def test_gives_up_after_configured_attempts(self, stack, clients, asset, deployment_config):
        _fresh_account(clients)
        clients.lambda_.create_function.side_effect = client_error(
            "InvalidParameterValueException",
            "The role defined for the function cannot be assumed by Lambda.",
        )

        with pytest.raises(ProvisioningError) as exc_info:
            stack.apply(asset, deployment_config)

        assert exc_info.value.step == "function"
        assert clients.lambda_.create_function.call_count == 3

    def test_no_retry_for_other_errors(self, stack, clients, asset, deployment_config):
        _fresh_account(clients)
        clients.lambda_.create_function.side_effect = client_error(
            "InvalidParameterValueException", "Unzipped size must be smaller than 262144000 bytes",
        )

        with pytest.raises(ProvisioningError):
            stack.apply(asset, deployment_config)

        assert clients.lambda_.create_function.call_count == 1


class TestApplyErrors:
    def test_access_denied_is_wrapped(self, stack, clients, asset, deployment_config):
        _fresh_account(clients)
        clients.iam.get_role.side_effect = client_error("AccessDenied", "not authorized")

        with pytest.raises(ProvisioningError) as exc_info:
            stack.apply(asset, deployment_config)

        assert exc_info.value.step == "role"
        assert exc_info.value.error_code == "AccessDenied"

    def test_bucket_recorded_before_later_failure(self, stack, clients, asset, deployment_config):
        _fresh_account(clients)
        clients.iam.create_role.side_effect = client_error("LimitExceeded")

        with pytest.raises(ProvisioningError):
            stack.apply(asset, deployment_config)

        assert stack.state_store.load().bucket.startswith("test-bucket-")

    def test_prefix_too_long(self, settings, clients, asset, deployment_config):
        settings.bucket_prefix = "x" * 50
        _fresh_account(clients)

        with pytest.raises(ProvisioningError, match="too long"):
            LambdaStack(settings, clients).apply(asset, deployment_config)

    def test_failed_upload_is_wrapped(self, stack, clients, asset, deployment_config):
        _fresh_account(clients)
        clients.s3.upload_file.side_effect = S3UploadFailedError(
            "Failed to upload deadbeef.zip to test-bucket/deadbeef.zip/0.0.5: "
            "An error occurred (AccessDenied) when calling the PutObject operation: Access Denied"
        )

        with pytest.raises(ProvisioningError, match="AccessDenied") as exc_info:
            stack.apply(asset, deployment_config)

        assert exc_info.value.step == "object"
        clients.lambda_.create_function.assert_not_called()

    def test_function_never_active_is_wrapped(self, stack, clients, asset, deployment_config):
        _fresh_account(clients)
        clients.lambda_.get_waiter.return_value.wait.side_effect = WaiterError(
            name="FunctionActiveV2",
            reason="Waiter encountered a terminal failure state",
            last_response={
                "Configuration": {
                    "State": "Failed",
                    "StateReason": "The function could not be initialized",
                    "StateReasonCode": "InvalidRuntime",
                },
            },
        )

        with pytest.raises(ProvisioningError) as exc_info:
            stack.apply(asset, deployment_config)

        assert exc_info.value.step == "function"
        assert exc_info.value.error_code == "InvalidRuntime"
        assert "could not be initialized" in str(exc_info.value)
        clients.lambda_.create_function_url_config.assert_not_called()

    def test_failed_code_update_is_wrapped(self, stack, clients, asset, deployment_config, settings):
        _save_state(stack, object_key="deadbeef.zip/0.0.4")
        _deployed_account(clients, settings)
        clients.lambda_.get_waiter.return_value.wait.side_effect = WaiterError(
            name="FunctionUpdatedV2",
            reason="Waiter encountered a terminal failure state",
            last_response={
                "LastUpdateStatus": "Failed",
                "LastUpdateStatusReason": "Unzipped size must be smaller than 262144000 bytes",
                "LastUpdateStatusReasonCode": "InvalidZipFileException",
            },
        )

        with pytest.raises(ProvisioningError, match="Unzipped size") as exc_info:
            stack.apply(asset, deployment_config)

        assert exc_info.value.error_code == "InvalidZipFileException"


class TestDestroy:
    def test_deletes_recorded_resources(self, stack, clients):
        _save_state(stack)
        paginator = MagicMock()
        paginator.paginate.return_value = [{"Contents": [{"Key": "deadbeef.zip/0.0.5"}]}]
        clients.s3.get_paginator.return_value = paginator

        stack.destroy()

        clients.lambda_.delete_function_url_config.assert_called_once_with(FunctionName="test-fn")
        clients.lambda_.delete_function.assert_called_once_with(FunctionName="test-fn")
        clients.iam.detach_role_policy.assert_called_once_with(
            RoleName="test-stack-lambda-exec", PolicyArn=BASIC_EXECUTION_POLICY_ARN,
        )
        clients.iam.delete_role.assert_called_once_with(RoleName="test-stack-lambda-exec")
        clients.s3.delete_objects.assert_called_once_with(
            Bucket="test-bucket-existing",
            Delete={"Objects": [{"Key": "deadbeef.zip/0.0.5"}], "Quiet": True},
        )
        clients.s3.delete_bucket.assert_called_once_with(Bucket="test-bucket-existing")
        assert stack.state_store.load() is None

    def test_tolerates_already_deleted_resources(self, stack, clients):
        _save_state(stack)
        clients.lambda_.delete_function_url_config.side_effect = client_error("ResourceNotFoundException")
        clients.lambda_.delete_function.side_effect = client_error("ResourceNotFoundException")
        clients.iam.detach_role_policy.side_effect = client_error("NoSuchEntity")
        clients.iam.delete_role.side_effect = client_error("NoSuchEntity")
        clients.s3.get_paginator.return_value.paginate.side_effect = client_error("NoSuchBucket")
        clients.s3.delete_bucket.side_effect = client_error("NoSuchBucket")

        stack.destroy()

        assert stack.state_store.load() is None

    def test_other_errors_keep_state(self, stack, clients):
        _save_state(stack)
        clients.lambda_.delete_function.side_effect = client_error("AccessDeniedException")

        with pytest.raises(ProvisioningError):
            stack.destroy()

        assert stack.state_store.load() is not None

    def test_without_state_is_noop(self, stack, clients):
        stack.destroy()

        clients.lambda_.delete_function.assert_not_called()
        clients.s3.delete_bucket.assert_not_called()


class TestOutputs:
    def test_reads_from_state(self, stack, clients):
        _save_state(stack)

        outputs = stack.outputs()

        assert outputs.function_url == FUNCTION_URL
        clients.lambda_.get_function_url_config.assert_not_called()

    def test_none_without_state(self, stack):
        assert stack.outputs() is None


class TestSynth:
    def test_document_shape(self, stack, asset, deployment_config):
        doc = stack.synth(asset, deployment_config)

        assert doc["provider"]["aws"] == [{"region": "ap-south-1"}]
        resources = doc["resource"]
        assert resources["aws_s3_object"]["lambda-archive"]["key"] == "deadbeef.zip/0.0.5"
        assert resources["aws_lambda_function"]["function"]["handler"] == "index.handler"
        assert resources["aws_lambda_function_url"]["function-url"]["authorization_type"] == "NONE"
        assert "lambda-url" in doc["output"]

    def test_is_json_serialisable(self, stack, asset, deployment_config):
        json.dumps(stack.synth(asset, deployment_config))

    def test_makes_no_aws_calls(self, stack, clients, asset, deployment_config):
        stack.synth(asset, deployment_config)

        assert clients.s3.method_calls == []
        assert clients.iam.method_calls == []
        assert clients.lambda_.method_calls == []
