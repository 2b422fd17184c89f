"""
tests/test_export.py -- CSV formula-injection defence in the user export.

A name such as =HYPERLINK("http://evil") must reach the spreadsheet as text.
"""

from __future__ import annotations

import csv
import io

import pytest

from api.export import EXPORT_COLUMNS, _sanitize_csv_cell, users_to_csv
from auth.models import UserProfile


@pytest.mark.parametrize("value", ["=1+1", "+1", "-2", "@SUM(A1)"])
def test_formula_prefixes_get_tab(value: str) -> None:
    assert _sanitize_csv_cell(value) == "\t" + value


@pytest.mark.parametrize("value", ["Alice", "alice@x.com", "a=b", ""])
def test_safe_text_unchanged(value: str) -> None:
    assert _sanitize_csv_cell(value) == value


def test_none_is_empty_cell() -> None:
    assert _sanitize_csv_cell(None) == ""


def test_users_to_csv_header_and_rows() -> None:
    user = UserProfile(id=3, name="-Bob", email="bob@x.com", role="student", is_active=True)
    rows = list(csv.reader(io.StringIO(users_to_csv([user]))))
    assert rows[0] == EXPORT_COLUMNS
    assert rows[1][:4] == ["3", "\t-Bob", "bob@x.com", "student"]


def test_empty_export_is_header_only() -> None:
    assert users_to_csv([]).strip() == ",".join(EXPORT_COLUMNS)
