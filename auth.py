"""
auth.py
Staff login for the console (bcrypt hashing, verify, login, change password).
"""

from __future__ import annotations

import bcrypt

import db
from logging_config import get_logger

logger = get_logger(__name__)

BCRYPT_MAX_BYTES = 72


def _secret(password: str) -> bytes:
    # bcrypt ignores (newer releases reject) anything past 72 bytes
    return password.encode("utf-8")[:BCRYPT_MAX_BYTES]


def hash_password(password: str) -> str:
    return bcrypt.hashpw(_secret(password), bcrypt.gensalt(rounds=12)).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    return bcrypt.checkpw(_secret(password), password_hash.encode("utf-8"))


def get_staff(username: str):
    return db.fetch_one("SELECT * FROM staff_users WHERE username = ?", (username,))


def login(username: str, password: str) -> bool:
    staff = get_staff(username)
    if not staff:
        logger.warning("Login attempt for unknown staff user %r", username)
        return False
    ok = verify_password(password, staff["password_hash"])
    if not ok:
        logger.warning("Wrong password for staff user %r", username)
    return ok


def change_password(username: str, new_password: str) -> None:
    db.execute(
        "UPDATE staff_users SET password_hash = ? WHERE username = ?",
        (hash_password(new_password), username),
    )
    db.clear_force_password_change()
    logger.info("Password changed for staff user %r", username)
