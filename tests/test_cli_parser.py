import cli_parser
from cli_parser import BuildConfig
from constants import MAX_CONCURRENT_PROVERS


def test_defaults_from_environment(monkeypatch, tmp_path):
    monkeypatch.setenv("BLOB_BUCKET", "builds")
    monkeypatch.setenv("BB_REGION", "auto")
    monkeypatch.setenv("BB_ENDPOINT", "https://s3.example.com")
    monkeypatch.setenv("BB_ACCESS_KEY_ID", "key")
    monkeypatch.setenv("BB_SECRET_ACCESS_KEY", "secret")

    config = cli_parser.init_config(["payload.json", "--temp-folder", str(tmp_path)])

    assert cli_parser.config is config
    assert config.payload == "payload.json"
    assert config.bucket == "builds"
    assert config.region == "auto"
    assert config.endpoint_url == "https://s3.example.com"
    assert config.access_key == "key"
    assert config.secret_key == "secret"
    assert config.max_provers == MAX_CONCURRENT_PROVERS
    assert not config.keep_workspace


def test_flags_override_environment(monkeypatch, tmp_path):
    monkeypatch.setenv("BLOB_BUCKET", "builds")
    temp_folder = tmp_path / "workspaces"

    config = cli_parser.init_config(
        [
            "--bucket",
            "other",
            "--temp-folder",
            str(temp_folder),
            "--keep-workspace",
            "--max-provers",
            "2",
        ]
    )

    assert config.bucket == "other"
    assert config.keep_workspace
    assert config.max_provers == 2
    assert temp_folder.is_dir()


def test_build_config_from_namespace(tmp_path):
    namespace = cli_parser.init_config(
        ["--bucket", "builds", "--region", "eu-west-1", "--temp-folder", str(tmp_path)]
    )

    build_config = BuildConfig.from_namespace(namespace)

    assert build_config.bucket == "builds"
    assert build_config.region == "eu-west-1"
    assert build_config.temp_folder == str(tmp_path)
