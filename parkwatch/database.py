"""SQLite storage for registered residents and their vehicles."""

from __future__ import annotations

import os
import sqlite3
from dataclasses import dataclass

_CREATE_USERS = (
    "CREATE TABLE IF NOT EXISTS users ("
    "id INTEGER PRIMARY KEY AUTOINCREMENT,"
    "name TEXT NOT NULL,"
    "plate TEXT UNIQUE NOT NULL,"
    "home TEXT,"
    "phone TEXT);"
)
_INSERT_USER = "INSERT INTO users (name, plate, home, phone) VALUES (?, ?, ?, ?);"
_UPDATE_USER = "UPDATE users SET name = ?, home = ?, phone = ? WHERE plate = ?;"
_COUNT_PLATE = "SELECT COUNT(*) FROM users WHERE plate = ?;"


class DatabaseError(Exception):
    """Raised when the user database cannot be opened or changed."""


@dataclass
class User:
    """A resident together with the plate of their vehicle."""

    name: str = ""
    plate: str = ""
    home: str | None = ""
    phone: str | None = ""


class UserDatabase:
    """The ``users`` table of the parking database."""

    def __init__(self, path: str | os.PathLike[str] = "parking.db") -> None:
        try:
            self._conn = sqlite3.connect(path)
        except sqlite3.Error as error:
            raise DatabaseError(f"Cannot open database: {error}") from error
        try:
            with self._conn:
                self._conn.execute(_CREATE_USERS)
        except sqlite3.Error as error:
            self._conn.close()
            raise DatabaseError(f"SQL error: {error}") from error

    def save_user(self, user: User) -> None:
        """Insert a new user; the plate must not be registered yet."""
        try:
            with self._conn:
                self._conn.execute(_INSERT_USER, (user.name, user.plate, user.home, user.phone))
        except sqlite3.Error as error:
            raise DatabaseError(f"Failed to insert data: {error}") from error

    def edit_user(self, user: User) -> None:
        """Update name, home and phone of the user with ``user.plate``."""
        try:
            with self._conn:
                cursor = self._conn.execute(
                    _UPDATE_USER, (user.name, user.home, user.phone, user.plate)
                )
        except sqlite3.Error as error:
            raise DatabaseError(f"Failed to update data: {error}") from error
        if cursor.rowcount == 0:
            raise DatabaseError("No matching plate number found")

    def plate_exists(self, plate: str) -> bool:
        """Tell whether a user with this plate is registered."""
        try:
            (count,) = self._conn.execute(_COUNT_PLATE, (plate,)).fetchone()
        except sqlite3.Error as error:
            raise DatabaseError(f"Failed to query plate: {error}") from error
        return count > 0

    def close(self) -> None:
        """Close the connection."""
        self._conn.close()

    def __enter__(self) -> UserDatabase:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()