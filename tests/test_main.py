"""Tests for the boot helpers."""

import os

from goods_tracker import main as boot


def test_secrets_path_is_under_repo_config():
    assert boot.SECRETS_PATH.parent.name == "config"
    assert (boot.BASE_DIR / "goods_tracker").is_dir()


def test_load_env_file(tmp_path, monkeypatch):
    monkeypatch.delenv("SUPABASE_URL", raising=False)
    monkeypatch.delenv("DEVICE_NAME", raising=False)
    env_path = tmp_path / "secrets.env"
    env_path.write_text("# comment\nSUPABASE_URL=https://x.supabase.co\nDEVICE_NAME=godown-pi\n")

    boot.load_env_file(env_path)

    assert os.environ["SUPABASE_URL"] == "https://x.supabase.co"
    assert os.environ["DEVICE_NAME"] == "godown-pi"
    monkeypatch.delenv("SUPABASE_URL")
    monkeypatch.delenv("DEVICE_NAME")


def test_missing_env_file_is_ignored(tmp_path):
    boot.load_env_file(tmp_path / "absent.env")
