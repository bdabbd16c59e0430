from __future__ import annotations

import auth
import db


def test_hash_and_verify_password() -> None:
    hashed = auth.hash_password("Sup3rSecret")
    assert hashed.startswith("$2")
    assert auth.verify_password("Sup3rSecret", hashed)
    assert not auth.verify_password("wrong", hashed)


def test_passwords_longer_than_72_bytes_are_truncated() -> None:
    long_pw = "x" * 100
    hashed = auth.hash_password(long_pw)
    assert auth.verify_password("x" * 72, hashed)


def test_default_staff_login_and_password_change(tmp_path, monkeypatch) -> None:
    monkeypatch.setattr(db, "DB_FILE", tmp_path / "gym.sqlite3")
    db.init_db(auth.hash_password("admin123"))

    assert db.is_force_password_change()
    assert auth.login("admin", "admin123")
    assert not auth.login("admin", "nope")
    assert not auth.login("ghost", "admin123")

    auth.change_password("admin", "n3w-pass")
    assert auth.login("admin", "n3w-pass")
    assert not db.is_force_password_change()
