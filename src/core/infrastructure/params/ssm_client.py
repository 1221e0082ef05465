import os
import logging
from typing import Dict

import boto3
from botocore.client import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from src.core.domain.errors import ConnectionResolutionError

log = logging.getLogger(__name__)

DB_PARAM_KEYS = ("host", "port", "name", "user", "password", "sslmode")
REQUIRED_PARAM_KEYS = ("host", "name", "user", "password")


def param_prefix() -> str:
    return os.getenv("HARVEST_PARAM_PREFIX", "harvest").strip("/")


def db_param_path(environment: str, key: str) -> str:
    return f"/{param_prefix()}/{environment}/db/{key}"


def create_ssm_client():
    region = os.getenv("AWS_REGION") or os.getenv("AWS_DEFAULT_REGION")
    endpoint = os.getenv("SSM_ENDPOINT")

    session = boto3.session.Session()
    cfg = BotoConfig(
        region_name=region or None,
        retries={"max_attempts": 3, "mode": "standard"},
    )
    return session.client("ssm", endpoint_url=endpoint, config=cfg)


def get_db_params(environment: str, client=None) -> Dict[str, str]:
    """Read the database parameters of a managed environment from SSM."""
    client = client or create_ssm_client()
    names = [db_param_path(environment, k) for k in DB_PARAM_KEYS]
    try:
        resp = client.get_parameters(Names=names, WithDecryption=True)
    except (BotoCoreError, ClientError) as e:
        raise ConnectionResolutionError(f"parameter store lookup failed: {e}", environment=environment) from e
    found = {p["Name"].rsplit("/", 1)[-1]: p["Value"] for p in resp.get("Parameters", [])}
    missing = [k for k in REQUIRED_PARAM_KEYS if not found.get(k)]
    if missing:
        raise ConnectionResolutionError(
            f"missing parameters for {environment}: {', '.join(db_param_path(environment, k) for k in missing)}",
            environment=environment,
        )
    log.debug("db params resolved env=%s host=%s", environment, found["host"])
    return found
