"""
Tests for referral export.
"""
import csv
import json

from redamigos.storage.export import FIELDNAMES, export_to_csv, export_to_jsonl


def test_csv_export(tmp_path, make_user, make_referral):
    owner = make_user()
    first = make_referral(owner.id, first_name="Lucía")
    make_referral(owner.id)

    path = tmp_path / "referrals.csv"
    assert export_to_csv([first], path) == 1

    with open(path, newline="", encoding="utf-8") as f:
        rows = list(csv.DictReader(f))
    assert list(rows[0]) == FIELDNAMES
    assert rows[0]["first_name"] == "Lucía"
    assert rows[0]["phone"] == ""


def test_jsonl_export(tmp_path, make_user, make_referral):
    owner = make_user()
    referrals = [make_referral(owner.id), make_referral(owner.id)]

    path = tmp_path / "referrals.jsonl"
    assert export_to_jsonl(referrals, path) == 2

    lines = path.read_text(encoding="utf-8").splitlines()
    assert [json.loads(line)["id"] for line in lines] == [r.id for r in referrals]


def test_empty_export_writes_header(tmp_path):
    path = tmp_path / "empty.csv"
    assert export_to_csv([], path) == 0
    assert path.read_text(encoding="utf-8").strip() == ",".join(FIELDNAMES)
