from proxyfleet.registry import DownloadSource, Instance


class TestInstance:
    def test_reads_camel_case_keys(self) -> None:
        instance = Instance.model_validate(
            {
                "id": "a1",
                "name": "edge",
                "binaryPath": "/opt/proxy/bin",
                "dataDir": "/opt/proxy",
                "configPath": "/opt/proxy/config.yml",
                "autoRestart": True,
                "lastStarted": "2024-01-01T00:00:00Z",
            }
        )

        assert instance.binary_path == "/opt/proxy/bin"
        assert instance.auto_restart is True
        assert instance.last_started == "2024-01-01T00:00:00Z"

    def test_accepts_field_names(self) -> None:
        instance = Instance(id="a1", name="edge", binary_path="/bin/x", data_dir="/tmp")

        assert instance.platform == "linux"
        assert instance.pid is None
        assert instance.auto_restart is False

    def test_ignores_unknown_keys(self) -> None:
        instance = Instance.model_validate(
            {"id": "a1", "name": "n", "binaryPath": "/b", "dataDir": "/d", "color": "red"}
        )

        assert not hasattr(instance, "color")

    def test_to_json_dict_uses_camel_case_and_drops_none(self) -> None:
        instance = Instance(
            id="a1",
            name="edge",
            binary_path="/bin/x",
            data_dir="/tmp",
            download_source=DownloadSource(url="https://example.invalid/x.tar.gz"),
        )

        data = instance.to_json_dict()

        assert data["binaryPath"] == "/bin/x"
        assert data["autoRestart"] is False
        assert data["downloadSource"] == {"url": "https://example.invalid/x.tar.gz"}
        assert "pid" not in data
        assert "lastStarted" not in data
