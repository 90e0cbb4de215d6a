"""Cloud-native secret resolution.

Secret references let the GitHub token and the graph database password live
in AWS Secrets Manager or GCP Secret Manager instead of plain environment
variables. Anything that is not a reference is returned unchanged.
"""

from __future__ import annotations

import json
import logging
import os

from overseer.ingestion.errors import ConfigError

logger = logging.getLogger("overseer.secrets")

_AWS_PREFIX = "aws-secret://"
_GCP_PREFIX = "gcp-secret://"


def is_secret_reference(value: str) -> bool:
    return value.startswith((_AWS_PREFIX, _GCP_PREFIX))


def resolve_secret(value: str) -> str:
    """Resolve a secret reference to its plaintext value.

    Supported formats:
      - "aws-secret://secret-name"         -> AWS Secrets Manager
      - "aws-secret://secret-name#key"     -> AWS Secrets Manager (JSON key)
      - "gcp-secret://project/secret/ver"  -> GCP Secret Manager
      - anything else                      -> returned as-is
    """
    if value.startswith(_AWS_PREFIX):
        logger.debug("Resolving AWS secret reference")
        return _resolve_aws_secret(value[len(_AWS_PREFIX):])
    if value.startswith(_GCP_PREFIX):
        logger.debug("Resolving GCP secret reference")
        return _resolve_gcp_secret(value[len(_GCP_PREFIX):])
    return value


def _resolve_aws_secret(ref: str) -> str:
    import boto3

    secret_name, _, json_key = ref.partition("#")
    client = boto3.client(
        "secretsmanager", region_name=os.environ.get("AWS_REGION", "us-east-1")
    )
    secret_string = client.get_secret_value(SecretId=secret_name)["SecretString"]
    if not json_key:
        return secret_string
    try:
        return str(json.loads(secret_string)[json_key])
    except (ValueError, KeyError) as exc:
        raise ConfigError(
            f"Secret {secret_name} has no JSON key {json_key!r}"
        ) from exc


def _resolve_gcp_secret(ref: str) -> str:
    """ref is a full "projects/.../versions/N" name or a bare secret name."""
    from google.cloud import secretmanager

    if ref.startswith("projects/"):
        name = ref
    else:
        project = os.environ.get("GCP_PROJECT_ID", "")
        if not project:
            raise ConfigError(
                "GCP_PROJECT_ID is required to resolve a bare gcp-secret:// name"
            )
        name = f"projects/{project}/secrets/{ref}/versions/latest"

    client = secretmanager.SecretManagerServiceClient()
    response = client.access_secret_version(request={"name": name})
    return response.payload.data.decode("UTF-8")


def resolve_graph_url() -> str:
    """Resolve AGENSGRAPH_URL, falling back to the AG_* variables."""
    url = os.environ.get("AGENSGRAPH_URL", "")
    if url:
        return resolve_secret(url)

    host = os.environ.get("AG_HOST", "localhost")
    port = os.environ.get("AG_PORT", "5432")
    user = os.environ.get("AG_USER", "overseer")
    password = resolve_secret(os.environ.get("AG_PASSWORD", "overseer"))
    database = os.environ.get("AG_DATABASE", "overseer")
    return f"postgresql://{user}:{password}@{host}:{port}/{database}"
