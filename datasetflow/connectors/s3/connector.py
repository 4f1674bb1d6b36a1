"""S3 object-storage connector.

The configured object (``key``) or every data object under ``path_prefix``
is downloaded with boto3, parsed with pandas and exposed as a DuckDB view
named ``table_name``. Dataset base queries are SQL over that view.
"""

import io
from typing import Any, Dict, List, Mapping

import boto3
import duckdb
import pandas as pd
from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError

from datasetflow.connectors.base.config_schema import ConfigField, ConfigSchema
from datasetflow.connectors.base.connector import ConnectorCapabilities
from datasetflow.connectors.duckdb.connector import (
    IDENTIFIER_PATTERN,
    DuckDBConnector,
    quote_identifier,
)
from datasetflow.exceptions import DataSourceConnectionError
from datasetflow.logging import get_logger

logger = get_logger(__name__)

BUCKET_PATTERN = r"[a-z0-9][a-z0-9.\-]{1,61}[a-z0-9]"

FORMAT_EXTENSIONS = {
    "csv": (".csv", ".txt"),
    "json": (".json",),
    "jsonl": (".jsonl", ".ndjson"),
    "parquet": (".parquet",),
}


def detect_file_format(key: str, file_format: str = "auto") -> str:
    """Detect file format from key extension."""
    if file_format != "auto":
        return file_format
    key_lower = key.lower()
    for fmt, extensions in FORMAT_EXTENSIONS.items():
        if key_lower.endswith(extensions):
            return fmt
    logger.warning(f"Unknown file extension for {key}, defaulting to CSV")
    return "csv"


def parse_object(content: bytes, file_format: str, options: Mapping[str, Any]) -> pd.DataFrame:
    """Parse one object's bytes into a DataFrame."""
    if file_format == "csv":
        return pd.read_csv(
            io.BytesIO(content),
            delimiter=options.get("csv_delimiter", ","),
            header=0 if options.get("csv_header", True) else None,
        )
    if file_format == "parquet":
        return pd.read_parquet(io.BytesIO(content))
    if file_format == "json":
        return pd.read_json(io.BytesIO(content))
    if file_format == "jsonl":
        return pd.read_json(io.BytesIO(content), lines=True)
    raise ValueError(f"Unsupported file format: {file_format}")


class S3Connector(DuckDBConnector):
    """
    Connector for CSV, JSON and Parquet objects stored in S3.

    Works with any S3-compatible endpoint (MinIO, LocalStack) through
    ``endpoint_url``.
    """

    name = "s3"
    category = "object-storage"
    display_name = "Amazon S3"
    description = "CSV, JSON or Parquet objects in an S3 bucket"
    config_schema = ConfigSchema(
        {
            "bucket": ConfigField(type="string", required=True, pattern=BUCKET_PATTERN),
            "key": ConfigField(type="string", description="Single object key"),
            "path_prefix": ConfigField(
                type="string", description="Read every matching object under it"
            ),
            "region": ConfigField(
                type="string", default="us-east-1", pattern=r"[a-z]{2}(-[a-z]+)+-\d"
            ),
            "access_key_id": ConfigField(type="string", secret=True),
            "secret_access_key": ConfigField(type="string", secret=True),
            "session_token": ConfigField(type="string", secret=True),
            "endpoint_url": ConfigField(type="string", pattern=r"https?://\S+"),
            "file_format": ConfigField(
                type="string",
                default="auto",
                choices=("auto",) + tuple(FORMAT_EXTENSIONS),
            ),
            "csv_delimiter": ConfigField(type="string", default=","),
            "csv_header": ConfigField(type="boolean", default=True),
            "table_name": ConfigField(
                type="string", default="data", pattern=IDENTIFIER_PATTERN
            ),
            "max_files": ConfigField(
                type="integer", default=100, minimum=1, maximum=10000
            ),
        }
    )
    capabilities = ConnectorCapabilities(
        supports_bulk_insert=True,
        supports_transactions=False,
        max_concurrent_connections=20,
        supports_streaming=True,
        supports_cancellation=True,
    )

    def validate_config(self, config):
        errors = super().validate_config(config)
        if isinstance(config, Mapping) and not (
            config.get("key") or config.get("path_prefix")
        ):
            errors.append("Either 'key' or 'path_prefix' is required")
        return errors

    def probe_query_for(self, config: Mapping[str, Any]) -> str:
        table_name = self.resolve_config(config).get("table_name", "data")
        return f"SELECT 1 FROM {quote_identifier(table_name)} LIMIT 1"

    def _create_client(self, config: Mapping[str, Any]) -> Any:
        s3_kwargs: Dict[str, Any] = {"region_name": config.get("region")}
        if config.get("access_key_id") and config.get("secret_access_key"):
            s3_kwargs["aws_access_key_id"] = config["access_key_id"]
            s3_kwargs["aws_secret_access_key"] = config["secret_access_key"]
            if config.get("session_token"):
                s3_kwargs["aws_session_token"] = config["session_token"]
        if config.get("endpoint_url"):
            s3_kwargs["endpoint_url"] = config["endpoint_url"]
        return boto3.client("s3", **s3_kwargs)

    def _list_keys(self, s3_client: Any, config: Mapping[str, Any]) -> List[str]:
        if config.get("key"):
            return [config["key"]]

        file_format = config.get("file_format", "auto")
        extensions = (
            sum(FORMAT_EXTENSIONS.values(), ())
            if file_format == "auto"
            else FORMAT_EXTENSIONS[file_format]
        )
        keys: List[str] = []
        paginator = s3_client.get_paginator("list_objects_v2")
        for page in paginator.paginate(
            Bucket=config["bucket"], Prefix=config.get("path_prefix", "")
        ):
            for obj in page.get("Contents", []):
                if obj["Key"].lower().endswith(extensions):
                    keys.append(obj["Key"])
                if len(keys) >= config["max_files"]:
                    logger.warning(
                        f"Stopping discovery: reached max files limit "
                        f"({config['max_files']})"
                    )
                    return keys
        return keys

    def _load_frame(self, config: Mapping[str, Any]) -> pd.DataFrame:
        s3_client = self._create_client(config)
        keys = self._list_keys(s3_client, config)
        if not keys:
            raise DataSourceConnectionError(
                f"No objects found in s3://{config['bucket']}/"
                f"{config.get('path_prefix', '')}",
                connector_name=self.name,
            )

        frames = []
        for key in keys:
            response = s3_client.get_object(Bucket=config["bucket"], Key=key)
            content = response["Body"].read()
            file_format = detect_file_format(key, config.get("file_format", "auto"))
            frames.append(parse_object(content, file_format, config))
        logger.info(
            f"Loaded {len(keys)} objects from S3 bucket '{config['bucket']}'"
        )
        return frames[0] if len(frames) == 1 else pd.concat(frames, ignore_index=True)

    def _open(self, config: Mapping[str, Any]) -> "duckdb.DuckDBPyConnection":
        try:
            frame = self._load_frame(config)
        except ClientError as e:
            error_code = e.response.get("Error", {}).get("Code")
            if error_code in ("404", "NoSuchKey", "NoSuchBucket"):
                msg = f"S3 object not found in bucket '{config['bucket']}'"
            elif error_code in ("403", "AccessDenied"):
                msg = f"Access denied to S3 bucket '{config['bucket']}'"
            elif error_code in ("InvalidAccessKeyId", "SignatureDoesNotMatch"):
                msg = "S3 authentication failed: Invalid credentials."
            else:
                msg = f"S3 request failed: {e}"
            raise DataSourceConnectionError(msg, connector_name=self.name)
        except NoCredentialsError:
            raise DataSourceConnectionError(
                "S3 credentials not found.", connector_name=self.name
            )
        except BotoCoreError as e:
            raise DataSourceConnectionError(
                f"S3 request failed: {e}", connector_name=self.name
            )
        except ValueError as e:
            raise DataSourceConnectionError(
                f"Failed to parse S3 object: {e}", connector_name=self.name
            )

        client = duckdb.connect(":memory:")
        client.register(config.get("table_name", "data"), frame)
        return client
