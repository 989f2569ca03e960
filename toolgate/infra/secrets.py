"""Secret reference resolution with Vault and AWS Secrets Manager support."""

import json
import logging
import os
from typing import Optional, Tuple

# Backends are optional; references to an unavailable backend resolve to None
try:
    import hvac
    HAS_VAULT = True
except ImportError:
    HAS_VAULT = False

try:
    import boto3
    HAS_AWS = True
except ImportError:
    HAS_AWS = False

logger = logging.getLogger(__name__)

REFERENCE_PREFIXES = ("vault://", "aws://", "env://")


def split_reference(path: str) -> Optional[Tuple[str, str]]:
    """Split 'container/.../key' into (container, key)."""
    parts = path.split("/")
    if len(parts) < 2 or not parts[-1]:
        return None
    return "/".join(parts[:-1]), parts[-1]


class SecretsManager:
    """Resolves secret references used by configuration (CREDS_KEY, REDIS_URL)."""

    def __init__(self):
        self.vault_client = None
        self.aws_client = None
        self._init_vault()
        self._init_aws()

    def _init_vault(self):
        if not HAS_VAULT:
            return

        vault_url = os.getenv("VAULT_ADDR")
        vault_token = os.getenv("VAULT_TOKEN")
        if vault_url and vault_token:
            try:
                client = hvac.Client(url=vault_url, token=vault_token)
                if client.is_authenticated():
                    self.vault_client = client
            except Exception as e:
                logger.warning(f"Vault unavailable at {vault_url}: {e}")

    def _init_aws(self):
        if not HAS_AWS:
            return

        aws_region = os.getenv("AWS_REGION")
        if aws_region:
            try:
                self.aws_client = boto3.client("secretsmanager", region_name=aws_region)
            except Exception as e:
                logger.warning(f"AWS Secrets Manager unavailable in {aws_region}: {e}")

    def get_secret(self, secret_ref: str) -> Optional[str]:
        """
        Resolve a secret reference.

        Supports:
        - vault://secret/path/key - HashiCorp Vault (KV v2)
        - aws://secret-name/key - AWS Secrets Manager (JSON secret string)
        - env://VAR_NAME - Environment variable
        - Direct value (if not a reference)

        Args:
            secret_ref: Secret reference or direct value

        Returns:
            Secret value or None if not found
        """
        if not secret_ref:
            return None

        if not secret_ref.startswith(REFERENCE_PREFIXES):
            return secret_ref

        if secret_ref.startswith("vault://"):
            return self._get_vault_secret(secret_ref[len("vault://"):])

        if secret_ref.startswith("aws://"):
            return self._get_aws_secret(secret_ref[len("aws://"):])

        return os.getenv(secret_ref[len("env://"):])

    def _get_vault_secret(self, path: str) -> Optional[str]:
        if not self.vault_client:
            logger.warning("Vault reference used but no Vault client is configured")
            return None

        parsed = split_reference(path)
        if not parsed:
            return None
        secret_path, key = parsed

        try:
            response = self.vault_client.secrets.kv.v2.read_secret_version(path=secret_path)
        except Exception as e:
            logger.error(f"Failed to read Vault secret '{secret_path}': {e}")
            return None
        return response.get("data", {}).get("data", {}).get(key)

    def _get_aws_secret(self, path: str) -> Optional[str]:
        if not self.aws_client:
            logger.warning("AWS reference used but no Secrets Manager client is configured")
            return None

        # aws://secret-name/key: the secret name is the first segment
        secret_name, _, key = path.partition("/")
        if not key:
            return None

        try:
            response = self.aws_client.get_secret_value(SecretId=secret_name)
            secret_data = json.loads(response.get("SecretString", "{}"))
        except Exception as e:
            logger.error(f"Failed to read AWS secret '{secret_name}': {e}")
            return None
        return secret_data.get(key)


# Global secrets manager instance
secrets_manager = SecretsManager()


def get_secret(secret_ref: str, fallback: Optional[str] = None) -> Optional[str]:
    """
    Convenience function to get a secret.

    Args:
        secret_ref: Secret reference (vault://, aws://, env://) or direct value
        fallback: Fallback value if secret not found

    Returns:
        Secret value or fallback
    """
    value = secrets_manager.get_secret(secret_ref)
    return value if value is not None else fallback
