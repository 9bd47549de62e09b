import datetime as dt
import os
import plistlib
import zipfile
from types import SimpleNamespace

import pytest

from ipa_export import codesign, provisioning
from ipa_export import validate as validate_mod
from ipa_export.errors import ValidationError
from ipa_export.types import DistributionProfile
from ipa_export.validate import validate_app_store_ipa, validate_artifact

_INFO = {
    "CFBundleIdentifier": "com.demo.app",
    "CFBundleShortVersionString": "1.2.3",
    "CFBundleVersion": "45",
    "CFBundleDisplayName": "Demo",
    "MinimumOSVersion": "13.0",
}


def _write_ipa(
    path,
    *,
    info: dict | None = None,
    profile: bool = True,
    icons: bool = True,
    extra_app: bool = False,
) -> None:
    with zipfile.ZipFile(path, "w", zipfile.ZIP_DEFLATED) as zf:
        zf.writestr("Payload/Runner.app/Info.plist", plistlib.dumps(info if info is not None else _INFO))
        zf.writestr("Payload/Runner.app/Runner", b"\xcf\xfa\xed\xfe")
        if profile:
            zf.writestr("Payload/Runner.app/embedded.mobileprovision", b"profile")
        if icons:
            zf.writestr("Payload/Runner.app/AppIcon60x60@3x.png", b"png")
            zf.writestr("Payload/Runner.app/AppIcon-1024.png", b"png")
        if extra_app:
            zf.writestr("Payload/Other.app/Info.plist", plistlib.dumps(_INFO))


@pytest.fixture
def signed(monkeypatch):
    monkeypatch.setattr(
        validate_mod,
        "_inspect_signature",
        lambda _p, _app: (True, ["Apple Distribution: Demo Co. (TEAM123)", "Apple WWDR"], ""),
    )
    future = dt.datetime(2999, 1, 1)
    monkeypatch.setattr(validate_mod, "_inspect_profile", lambda _d: (True, future, ""))


def test_valid_ipa_passes_without_warnings(tmp_path, signed) -> None:
    ipa = tmp_path / "Runner.ipa"
    _write_ipa(ipa)
    result = validate_app_store_ipa(str(ipa), expected_bundle_id="com.demo.app")
    assert result.app_name == "Runner.app"
    assert result.bundle_id == "com.demo.app"
    assert result.version == "1.2.3"
    assert result.build == "45"
    assert result.display_name == "Demo"
    assert result.authority.startswith("Apple Distribution")
    assert result.warnings == []


def test_non_store_profiles_skip_validation(tmp_path) -> None:
    ipa = tmp_path / "Runner.ipa"
    _write_ipa(ipa, profile=False)
    for profile in (
        DistributionProfile.AD_HOC,
        DistributionProfile.ENTERPRISE,
        DistributionProfile.DEVELOPMENT,
    ):
        assert validate_artifact(str(ipa), profile) is None


def test_missing_profile_is_fatal_for_app_store(tmp_path, signed) -> None:
    ipa = tmp_path / "Runner.ipa"
    _write_ipa(ipa, profile=False)
    with pytest.raises(ValidationError) as ei:
        validate_artifact(str(ipa), DistributionProfile.APP_STORE)
    assert ei.value.reason == "missing provisioning profile"


def test_missing_artifact(tmp_path) -> None:
    with pytest.raises(ValidationError) as ei:
        validate_app_store_ipa(str(tmp_path / "Runner.ipa"))
    assert ei.value.reason == "missing artifact"


def test_corrupt_archive(tmp_path) -> None:
    ipa = tmp_path / "Runner.ipa"
    ipa.write_bytes(b"this is not a zip file")
    with pytest.raises(ValidationError) as ei:
        validate_app_store_ipa(str(ipa))
    assert ei.value.reason == "corrupt"


def test_oversize_archive(monkeypatch, tmp_path, signed) -> None:
    ipa = tmp_path / "Runner.ipa"
    _write_ipa(ipa)
    monkeypatch.setattr(validate_mod, "APP_STORE_MAX_BYTES", 16)
    with pytest.raises(ValidationError) as ei:
        validate_app_store_ipa(str(ipa))
    assert ei.value.reason == "oversize"


def test_missing_and_multiple_bundles(tmp_path, signed) -> None:
    empty = tmp_path / "empty.ipa"
    with zipfile.ZipFile(empty, "w") as zf:
        zf.writestr("Payload/readme.txt", b"x")
    with pytest.raises(ValidationError) as ei:
        validate_app_store_ipa(str(empty))
    assert ei.value.reason == "missing bundle"

    multi = tmp_path / "multi.ipa"
    _write_ipa(multi, extra_app=True)
    with pytest.raises(ValidationError) as ei:
        validate_app_store_ipa(str(multi))
    assert ei.value.reason == "multiple bundles"


@pytest.mark.parametrize(
    ("drop", "reason"),
    [
        ("CFBundleIdentifier", "missing bundle identifier"),
        ("CFBundleShortVersionString", "missing version"),
        ("CFBundleVersion", "missing version"),
        ("CFBundleDisplayName", "missing name"),
    ],
)
def test_missing_manifest_fields(tmp_path, signed, drop, reason) -> None:
    info = {k: v for k, v in _INFO.items() if k != drop}
    ipa = tmp_path / "Runner.ipa"
    _write_ipa(ipa, info=info)
    with pytest.raises(ValidationError) as ei:
        validate_app_store_ipa(str(ipa))
    assert ei.value.reason == reason


def test_bundle_name_is_accepted_as_display_name(tmp_path, signed) -> None:
    info = dict(_INFO)
    del info["CFBundleDisplayName"]
    info["CFBundleName"] = "Runner"
    ipa = tmp_path / "Runner.ipa"
    _write_ipa(ipa, info=info)
    assert validate_app_store_ipa(str(ipa)).display_name == "Runner"


def test_unsigned_bundle_is_fatal(monkeypatch, tmp_path) -> None:
    ipa = tmp_path / "Runner.ipa"
    _write_ipa(ipa)
    monkeypatch.setattr(
        validate_mod, "_inspect_signature", lambda _p, _a: (False, [], "code object is not signed")
    )
    with pytest.raises(ValidationError) as ei:
        validate_app_store_ipa(str(ipa))
    assert ei.value.reason == "unsigned"
    assert "not signed" in ei.value.detail


def test_warnings_are_collected(monkeypatch, tmp_path) -> None:
    info = dict(_INFO, CFBundleShortVersionString="1.2.3-beta", CFBundleVersion="45a")
    del info["MinimumOSVersion"]
    ipa = tmp_path / "Runner.ipa"
    _write_ipa(ipa, info=info, icons=False)
    monkeypatch.setattr(
        validate_mod,
        "_inspect_signature",
        lambda _p, _a: (True, ["Apple Development: Dev (TEAM123)"], ""),
    )
    monkeypatch.setattr(
        validate_mod, "_inspect_profile", lambda _d: (False, dt.datetime(2000, 1, 1), "")
    )

    result = validate_app_store_ipa(str(ipa), expected_bundle_id="com.other.app")
    text = "\n".join(result.warnings)
    assert "Bundle ID mismatch" in text
    assert "Version format" in text
    assert "Build number should be numeric" in text
    assert "MinimumOSVersion" in text
    assert "No app icons found" in text
    assert "1024x1024" in text
    assert "distribution certificate" in text
    assert "development provisioning profile" in text
    assert "expired" in text
    assert len(result.warnings) == 9


def test_undecodable_profile_is_a_warning(monkeypatch, tmp_path, signed) -> None:
    ipa = tmp_path / "Runner.ipa"
    _write_ipa(ipa)
    monkeypatch.setattr(
        validate_mod, "_inspect_profile", lambda _d: (None, None, "required tool not found")
    )
    result = validate_app_store_ipa(str(ipa))
    assert len(result.warnings) == 1
    assert "Could not decode" in result.warnings[0]


def test_fatal_error_carries_earlier_warnings(monkeypatch, tmp_path) -> None:
    ipa = tmp_path / "Runner.ipa"
    _write_ipa(ipa, icons=False)
    monkeypatch.setattr(validate_mod, "_inspect_signature", lambda _p, _a: (False, [], "bad"))
    with pytest.raises(ValidationError) as ei:
        validate_app_store_ipa(str(ipa))
    assert any("No app icons" in w for w in ei.value.warnings)


class _MacTools:
    """`unzip` / `codesign` / `security` 的替身，记录调用并按需失败。"""

    def __init__(self) -> None:
        self.unzip_error = ""
        self.verify_stderr = b""
        self.authorities = ["Apple Distribution: Demo Co. (TEAM123)", "Apple Root CA"]
        self.profile = {
            "UUID": "UUID-1",
            "Entitlements": {"get-task-allow": False},
            "ExpirationDate": dt.datetime(2999, 1, 1),
        }
        self.decoded: list[tuple[str, bytes]] = []

    def unzip(self, cmd, **kwargs):
        if self.unzip_error:
            raise RuntimeError(self.unzip_error)
        dest = cmd[cmd.index("-d") + 1]
        os.makedirs(os.path.join(dest, "Payload", "Runner.app"))

    def codesign(self, cmd):
        if "--verify" in cmd:
            return SimpleNamespace(
                returncode=1 if self.verify_stderr else 0, stdout=b"", stderr=self.verify_stderr
            )
        text = "".join(f"Authority={a}\n" for a in self.authorities)
        return SimpleNamespace(returncode=0, stdout=b"", stderr=text.encode())

    def security(self, cmd, **kwargs):
        path = cmd[cmd.index("-i") + 1]
        with open(path, "rb") as f:
            self.decoded.append((path, f.read()))
        return SimpleNamespace(stdout=plistlib.dumps(self.profile))


@pytest.fixture
def mac_tools(monkeypatch) -> _MacTools:
    tools = _MacTools()

    def fake_tool(name: str) -> str:
        return f"/usr/bin/{name}"

    monkeypatch.setattr(validate_mod, "require_tool", fake_tool)
    monkeypatch.setattr(validate_mod, "run_cmd", tools.unzip)
    monkeypatch.setattr(codesign, "require_tool", fake_tool)
    monkeypatch.setattr(codesign, "_run", tools.codesign)
    monkeypatch.setattr(provisioning, "require_tool", fake_tool)
    monkeypatch.setattr(provisioning, "run_cmd", tools.security)
    return tools


def test_signature_and_profile_are_inspected(tmp_path, mac_tools) -> None:
    ipa = tmp_path / "Runner.ipa"
    _write_ipa(ipa)

    result = validate_app_store_ipa(str(ipa), expected_bundle_id="com.demo.app")

    assert result.authority == "Apple Distribution: Demo Co. (TEAM123)"
    assert result.warnings == []
    [(profile_path, data)] = mac_tools.decoded
    assert data == b"profile"
    assert os.path.basename(profile_path).startswith("embedded_")
    assert not os.path.exists(profile_path)


def test_unzip_failure_means_unsigned(tmp_path, mac_tools) -> None:
    ipa = tmp_path / "Runner.ipa"
    _write_ipa(ipa)
    mac_tools.unzip_error = "Command failed: unzip\ncannot find zipfile directory"

    with pytest.raises(ValidationError) as ei:
        validate_app_store_ipa(str(ipa))
    assert ei.value.reason == "unsigned"
    assert ei.value.detail == "Command failed: unzip"
    assert mac_tools.decoded == []


def test_codesign_verify_failure_means_unsigned(tmp_path, mac_tools) -> None:
    ipa = tmp_path / "Runner.ipa"
    _write_ipa(ipa)
    mac_tools.verify_stderr = b"Runner.app: code object is not signed at all\n"

    with pytest.raises(ValidationError) as ei:
        validate_app_store_ipa(str(ipa))
    assert ei.value.reason == "unsigned"
    assert ei.value.detail == "Runner.app: code object is not signed at all"


def test_development_identity_and_profile_warn(tmp_path, mac_tools) -> None:
    ipa = tmp_path / "Runner.ipa"
    _write_ipa(ipa)
    mac_tools.authorities = ["Apple Development: dev@example.com (ABCDE)"]
    mac_tools.profile["Entitlements"] = {"get-task-allow": True}

    result = validate_app_store_ipa(str(ipa))

    assert result.authority.startswith("Apple Development")
    assert len(result.warnings) == 2
    assert "distribution certificate" in result.warnings[0]
    assert "development provisioning profile" in result.warnings[1]


def test_undecodable_embedded_profile_is_removed(tmp_path, mac_tools) -> None:
    ipa = tmp_path / "Runner.ipa"
    _write_ipa(ipa)
    mac_tools.profile = ["not", "a", "dict"]

    result = validate_app_store_ipa(str(ipa))

    assert len(result.warnings) == 1
    assert "Could not decode embedded provisioning profile" in result.warnings[0]
    [(profile_path, _data)] = mac_tools.decoded
    assert not os.path.exists(profile_path)
