import pytest

from ipa_export import xcodebuild
from ipa_export.errors import ExportToolError, ToolingMissing


@pytest.fixture(autouse=True)
def _fake_tool(monkeypatch) -> None:
    monkeypatch.setattr(xcodebuild, "require_tool", lambda name: f"/usr/bin/{name}")


def test_export_command_without_api_key() -> None:
    cmd = xcodebuild.export_command("out/Runner.xcarchive", "out", "ios/ExportOptions.plist")
    assert cmd == [
        "/usr/bin/xcodebuild",
        "-exportArchive",
        "-archivePath",
        "out/Runner.xcarchive",
        "-exportPath",
        "out",
        "-exportOptionsPlist",
        "ios/ExportOptions.plist",
        "-allowProvisioningUpdates",
    ]


def test_export_command_with_api_key() -> None:
    auth = xcodebuild.ApiKeyAuth(key_path="/tmp/AuthKey_K1.p8", key_id="K1", issuer_id="ISS")
    cmd = xcodebuild.export_command("a", "b", "c", api_key=auth)
    i = cmd.index("-authenticationKeyPath")
    assert cmd[i : i + 6] == [
        "-authenticationKeyPath",
        "/tmp/AuthKey_K1.p8",
        "-authenticationKeyID",
        "K1",
        "-authenticationKeyIssuerID",
        "ISS",
    ]
    assert cmd[-1] == "-allowProvisioningUpdates"


def test_export_archive_wraps_command_failure(monkeypatch) -> None:
    def fake_run_cmd(cmd, timeout=None):
        _ = (cmd, timeout)
        raise RuntimeError("Command failed: xcodebuild\nerror: No Accounts")

    monkeypatch.setattr(xcodebuild, "run_cmd", fake_run_cmd)
    with pytest.raises(ExportToolError, match="No Accounts"):
        xcodebuild.export_archive("a", "b", "c")


def test_export_archive_keeps_tooling_missing(monkeypatch) -> None:
    def fake_run_cmd(cmd, timeout=None):
        _ = (cmd, timeout)
        raise ToolingMissing("required tool not found: xcodebuild")

    monkeypatch.setattr(xcodebuild, "run_cmd", fake_run_cmd)
    with pytest.raises(ToolingMissing):
        xcodebuild.export_archive("a", "b", "c")


def test_export_archive_passes_timeout(monkeypatch) -> None:
    seen: dict = {}
    monkeypatch.setattr(xcodebuild, "run_cmd", lambda cmd, timeout=None: seen.update(t=timeout))
    xcodebuild.export_archive("a", "b", "c", timeout=42.0)
    assert seen["t"] == 42.0
