from __future__ import annotations

import hashlib
import subprocess
import sys
from pathlib import Path


SCRIPTS_DIR = Path(__file__).resolve().parents[2] / "scripts"


def _run_script(name: str, *args: str) -> str:
    completed = subprocess.run(
        [sys.executable, str(SCRIPTS_DIR / name), *args],
        check=True,
        capture_output=True,
        text=True,
    )
    return completed.stdout


def test_bootstrap_script_emits_sql_for_user_id_target() -> None:
    user_id = "00000000-0000-0000-0000-000000000123"
    output = _run_script("bootstrap_admin.py", "--user-id", user_id, "--role", "farmer", "--name", "Ramesh")

    assert "update auth.users" in output
    assert f"where id = '{user_id}'::uuid;" in output
    assert "jsonb_build_object('role', 'farmer')" in output
    assert "select id::text, 'Ramesh', 'farmer'" in output
    assert "on conflict (id) do update set role = excluded.role;" in output


def test_bootstrap_script_emits_sql_for_email_target() -> None:
    output = _run_script("bootstrap_admin.py", "--email", "o'neil@example.in")

    assert "where email = 'o''neil@example.in';" in output
    assert "jsonb_build_object('role', 'admin')" in output


def test_register_module_script_stores_only_the_key_hash() -> None:
    output = _run_script("register_module.py", "--api-key", "worker-secret")
    key_hash = hashlib.sha256(b"worker-secret").hexdigest()

    assert f"'{key_hash}'" in output
    assert "worker-secret" not in output
    assert "array['listings:expire']::text[]" in output
    assert "'listing-expiry'" in output
