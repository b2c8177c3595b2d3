import json
import logging
import os

import boto3
from botocore.exceptions import BotoCoreError, ClientError

logger = logging.getLogger()
logger.setLevel(logging.INFO)

BROKER_LIVE_STATE_TABLE = os.environ.get("BROKER_LIVE_STATE_TABLE", "")
DYNAMODB_ENDPOINT_URL = os.environ.get("DYNAMODB_ENDPOINT_URL") or None

dynamodb = boto3.resource("dynamodb", endpoint_url=DYNAMODB_ENDPOINT_URL)
table = dynamodb.Table(BROKER_LIVE_STATE_TABLE) if BROKER_LIVE_STATE_TABLE else None


def _fail(reason):
    return {
        "statusCode": 500,
        "headers": {"Content-Type": "application/json"},
        "body": json.dumps({"status": "FAIL", "reason": reason}),
    }


def handler(event, context):
    logger.info("Health check request received")

    if table is None:
        return _fail("BROKER_LIVE_STATE_TABLE not set")

    try:
        # DescribeTable, lazily loaded by the resource
        table_status = table.table_status
    except (ClientError, BotoCoreError) as e:
        logger.error(f"Health check failed for {table.name}: {e}")
        return _fail("Table not reachable")

    if table_status != "ACTIVE":
        return _fail(f"Table status is {table_status}")

    return {
        "statusCode": 200,
        "headers": {"Content-Type": "application/json"},
        "body": json.dumps(
            {
                "status": "PASS",
                "table": table.name,
                "table_status": table_status,
            }
        ),
    }
