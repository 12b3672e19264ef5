"""IAM documents and fixed identifiers used by the Lambda stack."""

import json

LAMBDA_ASSUME_ROLE_POLICY: dict = {
    "Version": "2012-10-17",
    "Statement": [
        {
            "Action": "sts:AssumeRole",
            "Principal": {"Service": "lambda.amazonaws.com"},
            "Effect": "Allow",
            "Sid": "",
        }
    ],
}

BASIC_EXECUTION_POLICY_ARN = (
    "arn:aws:iam::aws:policy/service-role/AWSLambdaBasicExecutionRole"
)

# Public Function URL access
FUNCTION_URL_STATEMENT_ID = "FunctionURLAllowPublicAccess"
FUNCTION_URL_ACTION = "lambda:InvokeFunctionUrl"
FUNCTION_URL_AUTH_TYPE = "NONE"


def assume_role_policy_document() -> str:
    return json.dumps(LAMBDA_ASSUME_ROLE_POLICY)
