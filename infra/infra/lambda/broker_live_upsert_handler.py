"""
Broker live upsert handler - stores the latest account snapshot pushed by the
broker sync process.

One DynamoDB item per (user_id, broker, account_id); every call replaces the
whole item.
"""
import base64
import hashlib
import hmac
import json
import logging
import math
import os
from dataclasses import fields
from datetime import datetime, timezone
from decimal import Decimal, DecimalException

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from broker_live_payload import MissingFieldsError, parse_payload

logger = logging.getLogger()
logger.setLevel(logging.INFO)

BROKER_LIVE_STATE_TABLE = os.environ.get("BROKER_LIVE_STATE_TABLE", "")
DYNAMODB_ENDPOINT_URL = os.environ.get("DYNAMODB_ENDPOINT_URL") or None

INTERNAL_KEY_HEADER = "x-tj-internal-key"

dynamodb = boto3.resource("dynamodb", endpoint_url=DYNAMODB_ENDPOINT_URL)
table = dynamodb.Table(BROKER_LIVE_STATE_TABLE) if BROKER_LIVE_STATE_TABLE else None


def _json(status_code, body):
    return {
        "statusCode": status_code,
        "headers": {"Content-Type": "application/json"},
        "body": json.dumps(body),
    }


def _error(status_code, error, details=None):
    body = {"ok": False, "error": error}
    if details:
        body["details"] = details
    return _json(status_code, body)


def _method(event) -> str:
    # HTTP API (payload v2) puts the method under requestContext.http
    http = (event.get("requestContext") or {}).get("http") or {}
    return (http.get("method") or event.get("httpMethod") or "").upper()


def _headers(event) -> dict:
    return {str(k).lower(): v for k, v in (event.get("headers") or {}).items()}


def _sha256(value: str) -> bytes:
    return hashlib.sha256(value.encode("utf-8")).digest()


def _secret_matches(expected: str, provided: str) -> bool:
    """Digests are fixed-length, so compare_digest leaks neither length nor content."""
    return hmac.compare_digest(_sha256(expected), _sha256(provided))


def _bearer_token(headers: dict):
    auth = (headers.get("authorization") or "").strip()
    prefix = "bearer "
    if not auth.lower().startswith(prefix):
        return None
    return auth[len(prefix):].strip() or None


def _authenticate(headers: dict):
    """Return the accepted auth mode, or None."""
    expected = os.environ.get("TJ_INTERNAL_KEY", "").strip()
    if not expected:
        logger.error("TJ_INTERNAL_KEY not configured, rejecting request")
        return None

    provided = (headers.get(INTERNAL_KEY_HEADER) or "").strip()
    if provided and _secret_matches(expected, provided):
        return "internal-key"

    service_token = os.environ.get("BROKER_LIVE_SERVICE_TOKEN", "").strip()
    token = _bearer_token(headers)
    if service_token and token and _secret_matches(service_token, token):
        return "service"

    return None


def _read_body(event):
    raw = event.get("body")
    if raw is None:
        raise ValueError("empty body")
    if event.get("isBase64Encoded"):
        raw = base64.b64decode(raw).decode("utf-8")
    return json.loads(raw, parse_float=_finite_float, parse_constant=_reject_constant)


def _finite_float(literal):
    # "1e400" overflows to inf, which DynamoDB cannot store; treat it as null
    n = float(literal)
    return n if math.isfinite(n) else None


def _reject_constant(name):
    raise ValueError(f"Invalid JSON constant: {name}")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def broker_account_key(broker: str, account_id: str) -> str:
    # Length prefix keeps ("a#b", "c") and ("a", "b#c") apart
    return f"{len(broker)}:{broker}#{account_id}"


def _to_item(state) -> dict:
    now = _now_iso()
    row = {f.name: getattr(state, f.name) for f in fields(state)}
    row["broker_account"] = broker_account_key(state.broker, state.account_id)
    row["last_sync_at"] = now
    row["updated_at"] = now
    # DynamoDB rejects float; round-trip through JSON to get Decimals everywhere
    return json.loads(json.dumps(row), parse_float=Decimal)


def handler(event, context):
    method = _method(event)
    if method == "OPTIONS":
        return {"statusCode": 204, "body": ""}
    if method != "POST":
        return _error(405, "METHOD_NOT_ALLOWED")

    auth_mode = _authenticate(_headers(event))
    if not auth_mode:
        return _error(401, "UNAUTHORIZED")
    logger.info(f"auth={auth_mode}")

    try:
        body = _read_body(event)
    except (ValueError, RecursionError):
        return _error(400, "INVALID_JSON")

    try:
        state = parse_payload(body)
    except MissingFieldsError as e:
        return _error(400, "MISSING_FIELDS", {"required": e.required})

    context_ids = f"user_id={state.user_id} broker={state.broker} account_id={state.account_id}"

    if table is None:
        logger.error(f"BROKER_LIVE_STATE_TABLE not configured, cannot upsert {context_ids}")
        return _error(500, "UPSERT_FAILED")

    # DecimalException and RecursionError come from boto3 serializing exposure/meta
    try:
        table.put_item(Item=_to_item(state))
    except (ClientError, BotoCoreError, DecimalException, RecursionError) as e:
        logger.error(f"Upsert failed: {e} {context_ids}")
        return _error(500, "UPSERT_FAILED")

    return _json(200, {"ok": True})
