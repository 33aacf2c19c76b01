import json
from unittest.mock import MagicMock

import pytest

from build_layer.blob_store import BlobStore
from cli_parser import BuildConfig


@pytest.fixture
def client():
    return MagicMock()


def test_requires_bucket(client):
    with pytest.raises(ValueError):
        BlobStore("", client=client)


def test_put_json(client):
    store = BlobStore("builds", client=client)

    store.put_json("status/test123abc.json", [{"msg": "Complete.", "time": 1.5}])

    kwargs = client.put_object.call_args.kwargs
    assert kwargs["Bucket"] == "builds"
    assert kwargs["Key"] == "status/test123abc.json"
    assert kwargs["ContentType"] == "application/json"
    assert json.loads(kwargs["Body"]) == [{"msg": "Complete.", "time": 1.5}]


def test_upload_file_reports_progress(client, tmp_path):
    path = tmp_path / "pkg.zip"
    path.write_bytes(b"x" * 100)

    def _upload(file_path, bucket, key, Callback):
        Callback(60)
        Callback(40)

    client.upload_file.side_effect = _upload
    progress = []
    store = BlobStore("builds", client=client)

    store.upload_file("build/pkg/pkg.zip", str(path), progress=lambda *args: progress.append(args))

    client.upload_file.assert_called_once()
    assert client.upload_file.call_args.args == (str(path), "builds", "build/pkg/pkg.zip")
    assert progress == [(60, 100), (100, 100)]


def test_from_config_builds_s3_client():
    store = BlobStore.from_config(
        BuildConfig(
            bucket="builds",
            region="us-east-1",
            endpoint_url="http://127.0.0.1:9000",
            access_key="key",
            secret_key="secret",
        )
    )

    assert store.bucket == "builds"
    assert store.client.meta.endpoint_url == "http://127.0.0.1:9000"
    assert store.client.meta.region_name == "us-east-1"
