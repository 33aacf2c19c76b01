from __future__ import annotations

import json
import os
from typing import Callable, Optional

import boto3
from bittensor import logging
from botocore.config import Config


class BlobStore:
    """
    Thin wrapper over an S3 compatible bucket.

    Works against AWS S3 as well as any endpoint that speaks the S3 API
    (R2, MinIO, Backblaze) when ``endpoint_url`` is supplied.
    """

    def __init__(
        self,
        bucket: str,
        region: Optional[str] = None,
        endpoint_url: Optional[str] = None,
        access_key: Optional[str] = None,
        secret_key: Optional[str] = None,
        client=None,
    ):
        if not bucket:
            raise ValueError("A bucket is required to initialize BlobStore.")
        self.bucket = bucket
        self.client = client or boto3.client(
            "s3",
            endpoint_url=endpoint_url or None,
            aws_access_key_id=access_key or None,
            aws_secret_access_key=secret_key or None,
            region_name=region or None,
            config=Config(
                retries={"max_attempts": 3}, connect_timeout=5, read_timeout=30
            ),
        )

    @classmethod
    def from_config(cls, config) -> BlobStore:
        return cls(
            bucket=config.bucket,
            region=config.region,
            endpoint_url=config.endpoint_url,
            access_key=config.access_key,
            secret_key=config.secret_key,
        )

    def put_json(self, key: str, payload):
        """
        Overwrite ``key`` with the JSON encoding of ``payload``.
        """
        body = json.dumps(payload, default=str).encode("utf-8")
        self.client.put_object(
            Bucket=self.bucket,
            Key=key,
            Body=body,
            ContentType="application/json",
        )
        logging.trace(f"Stored {len(body)} bytes of JSON at {key}")

    def upload_file(
        self,
        key: str,
        file_path: str,
        progress: Optional[Callable[[int, int], None]] = None,
    ):
        """
        Stream a file from disk to ``key``.

        boto3 reads the file in chunks and switches to a multipart upload for
        large files, so the content is never held in memory at once.

        Args:
            key (str): Destination object key.
            file_path (str): Local file to upload.
            progress (Callable[[int, int], None]): Optional observer receiving
                ``(bytes_uploaded, total_bytes)``.
        """
        total = os.path.getsize(file_path)
        uploaded = 0

        def _callback(chunk: int):
            nonlocal uploaded
            uploaded += chunk
            if progress:
                progress(uploaded, total)

        self.client.upload_file(file_path, self.bucket, key, Callback=_callback)
        logging.debug(f"Upload complete: {key} ({total} bytes)")
