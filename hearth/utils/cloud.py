import json
import re
from typing import Optional, Tuple

import boto3
import requests
from botocore.exceptions import BotoCoreError, ClientError

from hearth.core.errors import ResolutionError
from hearth.utils.logger import sys_logger

CONFIG_BASE_PATTERN = re.compile(r"^\s*ConfigBase:\s*(\S+)\s*$", re.MULTILINE)
STORE_URL_PATTERN = re.compile(r"^(?:s3|store)://([^/]+)/?(.*)$")

TOKEN_TTL_SECONDS = "21600"


def parse_store_url(url: str) -> Tuple[str, str]:
    """Splits 's3://bucket/prefix' into (bucket, prefix without trailing slash)."""
    match = STORE_URL_PATTERN.match(url.strip())
    if not match:
        raise ResolutionError(f"Invalid state store locator: '{url}'")
    return match.group(1), match.group(2).strip("/")


def parse_config_base(user_data: str) -> Optional[str]:
    """Extracts the 'ConfigBase: s3://bucket/prefix' locator from the boot configuration blob."""
    match = CONFIG_BASE_PATTERN.search(user_data or "")
    return match.group(1) if match else None


class MetadataClient:
    """
    Read-only client of the instance metadata endpoint.
    Uses an IMDSv2 session token when the endpoint offers one.
    """

    def __init__(self, base_url: str, timeout: float = 10.0, session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self._token: Optional[str] = None
        self._token_checked = False

    def _headers(self):
        if not self._token_checked:
            self._token_checked = True
            try:
                res = self.session.put(
                    f"{self.base_url}/api/token",
                    headers={"X-aws-ec2-metadata-token-ttl-seconds": TOKEN_TTL_SECONDS},
                    timeout=self.timeout,
                )
                if res.status_code == 200:
                    self._token = res.text.strip()
            except requests.RequestException as e:
                sys_logger.warning(f"Metadata token unavailable, using unauthenticated requests: {e}")
        return {"X-aws-ec2-metadata-token": self._token} if self._token else {}

    def get(self, path: str) -> str:
        url = f"{self.base_url}/{path.lstrip('/')}"
        try:
            res = self.session.get(url, headers=self._headers(), timeout=self.timeout)
            res.raise_for_status()
        except requests.RequestException as e:
            raise ResolutionError(f"Metadata request failed for {url}: {e}") from e
        return res.text

    def instance_id(self) -> str:
        return self.get("meta-data/instance-id").strip()

    def region(self) -> str:
        document = self.get("dynamic/instance-identity/document")
        try:
            return json.loads(document)["region"]
        except (ValueError, KeyError) as e:
            raise ResolutionError(f"Invalid instance identity document: {e}") from e

    def local_hostname(self) -> str:
        return self.get("meta-data/local-hostname").strip()

    def local_ipv4(self) -> str:
        return self.get("meta-data/local-ipv4").strip()

    def primary_mac(self) -> str:
        return self.get("meta-data/mac").strip()

    def subnet_cidr(self, mac: str) -> str:
        return self.get(f"meta-data/network/interfaces/macs/{mac}/subnet-ipv4-cidr-block").strip()

    def user_data(self) -> str:
        return self.get("user-data")


class StateStoreClient:
    """Read-only object fetch from the S3 state store."""

    def __init__(self, region: str, client=None):
        self.client = client or boto3.client("s3", region_name=region)

    def fetch(self, bucket: str, key: str) -> bytes:
        sys_logger.info(f"Fetching s3://{bucket}/{key}")
        try:
            response = self.client.get_object(Bucket=bucket, Key=key)
            return response["Body"].read()
        except (ClientError, BotoCoreError) as e:
            raise ResolutionError(f"Failed to fetch s3://{bucket}/{key}: {e}") from e

    def fetch_text(self, bucket: str, key: str) -> str:
        return self.fetch(bucket, key).decode("utf-8")
