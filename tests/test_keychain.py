import os

import pytest

from ipa_export import keychain as keychain_mod
from ipa_export.errors import ToolingMissing
from ipa_export.keychain import SigningKeychain, signing_session, transient_dir
from ipa_export.provisioning import ProvisioningProfile


def test_import_certificate_redacts_password(monkeypatch) -> None:
    captured: dict = {}

    def fake_run_cmd(cmd, **kwargs):
        captured["cmd"] = cmd
        captured.update(kwargs)

    monkeypatch.setattr(keychain_mod, "require_tool", lambda name: f"/usr/bin/{name}")
    monkeypatch.setattr(keychain_mod, "run_cmd", fake_run_cmd)

    kc = SigningKeychain("/tmp/ios-build.keychain", "/tmp/profiles")
    kc.import_certificate("/tmp/cert.p12", "s3cret")

    assert captured["cmd"][:3] == ["/usr/bin/security", "import", "/tmp/cert.p12"]
    assert captured["cmd"][captured["cmd"].index("-k") + 1] == "/tmp/ios-build.keychain"
    assert captured["cmd"][-2:] == ["-T", "/usr/bin/codesign"]
    assert captured["redact"] == ("s3cret",)


def test_install_profile_uses_uuid_and_session_removes_it(monkeypatch, tmp_path) -> None:
    src = tmp_path / "profile.mobileprovision"
    src.write_bytes(b"profile")
    profiles_dir = tmp_path / "Provisioning Profiles"

    monkeypatch.setattr(
        keychain_mod,
        "load_mobileprovision",
        lambda _p: ProvisioningProfile(raw={}, team_id="TEAM123", uuid="ABC-123"),
    )

    kc = SigningKeychain("/tmp/kc", str(profiles_dir))
    with signing_session(kc):
        dest = kc.install_profile(str(src))
        assert os.path.basename(dest) == "ABC-123.mobileprovision"
        assert os.path.isfile(dest)
    assert not os.path.exists(dest)
    assert kc.installed_profiles == []


def test_session_restores_profile_installed_before_it(monkeypatch, tmp_path) -> None:
    src = tmp_path / "profile.mobileprovision"
    src.write_bytes(b"session profile")
    profiles_dir = tmp_path / "Provisioning Profiles"
    profiles_dir.mkdir()
    existing = profiles_dir / "UUID-1.mobileprovision"
    existing.write_bytes(b"host profile")

    monkeypatch.setattr(
        keychain_mod,
        "load_mobileprovision",
        lambda _p: ProvisioningProfile(raw={}, team_id="TEAM123", uuid="UUID-1"),
    )

    kc = SigningKeychain("/tmp/kc", str(profiles_dir))
    with signing_session(kc):
        dest = kc.install_profile(str(src))
        kc.install_profile(str(src))
        assert dest == str(existing)
        assert existing.read_bytes() == b"session profile"
    assert existing.read_bytes() == b"host profile"
    assert kc.installed_profiles == []
    assert kc.replaced_profiles == {}


def test_install_profile_falls_back_to_file_name(monkeypatch, tmp_path) -> None:
    src = tmp_path / "profile.mobileprovision"
    src.write_bytes(b"profile")

    def no_security(_p):
        raise ToolingMissing("required tool not found: security")

    monkeypatch.setattr(keychain_mod, "load_mobileprovision", no_security)
    kc = SigningKeychain("/tmp/kc", str(tmp_path / "profiles"))
    dest = kc.install_profile(str(src))
    assert os.path.basename(dest) == "profile.mobileprovision"


def test_signing_session_releases_on_error(monkeypatch, tmp_path) -> None:
    src = tmp_path / "profile.mobileprovision"
    src.write_bytes(b"profile")
    def undecodable(_p):
        raise ValueError("bad profile")

    monkeypatch.setattr(keychain_mod, "load_mobileprovision", undecodable)

    kc = SigningKeychain("/tmp/kc", str(tmp_path / "profiles"))
    with pytest.raises(RuntimeError):
        with signing_session(kc):
            dest = kc.install_profile(str(src))
            raise RuntimeError("export crashed")
    assert not os.path.exists(dest)


def test_transient_dir_is_private_and_removed() -> None:
    with transient_dir("asc_key_") as td:
        assert os.path.isdir(td)
        assert os.stat(td).st_mode & 0o777 == 0o700
        with open(os.path.join(td, "AuthKey.p8"), "wb") as f:
            f.write(b"key")
    assert not os.path.exists(td)


def test_transient_dir_removed_on_exception() -> None:
    with pytest.raises(ValueError):
        with transient_dir("certs_manual_") as td:
            raise ValueError("boom")
    assert not os.path.exists(td)
