"""
api/export.py -- CSV rendering for the admin user export.

Security: names, bios and countries are user-supplied. A cell starting with
=, +, - or @ is read as a formula by spreadsheet applications (CWE-1236), so
such cells are prefixed with a tab, which makes the spreadsheet treat them as
text.
"""

from __future__ import annotations

import csv
import io

from auth.models import UserProfile

EXPORT_COLUMNS = [
    "id",
    "name",
    "email",
    "role",
    "is_active",
    "email_verified",
    "phone",
    "country",
    "created_at",
    "last_login",
]

_FORMULA_PREFIXES = ("=", "+", "-", "@")


def _sanitize_csv_cell(value) -> str:
    if value is None:
        return ""
    text = str(value)
    if text.startswith(_FORMULA_PREFIXES):
        return "\t" + text
    return text


def users_to_csv(users: list[UserProfile]) -> str:
    """Render profiles as CSV with a header row of EXPORT_COLUMNS."""
    buf = io.StringIO()
    writer = csv.writer(buf)
    writer.writerow(EXPORT_COLUMNS)
    for user in users:
        writer.writerow([_sanitize_csv_cell(getattr(user, col)) for col in EXPORT_COLUMNS])
    return buf.getvalue()
