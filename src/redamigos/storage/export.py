"""Export utilities for referral lists."""

import csv
import json
from pathlib import Path
from typing import Any, Iterable, TextIO

from redamigos.logging_config import get_logger
from redamigos.storage.schemas import ReferralRecord

logger = get_logger(__name__)

FIELDNAMES = [
    "id",
    "identification",
    "first_name",
    "last_name",
    "gender",
    "birth_date",
    "phone",
    "email",
    "department",
    "municipality",
    "zone",
    "neighborhood",
    "occupation",
    "status",
    "user_id",
    "created_at",
]


def _as_row(referral: ReferralRecord) -> dict[str, Any]:
    data = referral.model_dump(mode="json", include=set(FIELDNAMES))
    return {key: data.get(key) for key in FIELDNAMES}


def write_csv(referrals: Iterable[ReferralRecord], stream: TextIO) -> int:
    """Write referrals as CSV to an open text stream.

    Returns:
        Number of rows written
    """
    writer = csv.DictWriter(stream, fieldnames=FIELDNAMES)
    writer.writeheader()
    count = 0
    for referral in referrals:
        writer.writerow({key: "" if value is None else value for key, value in _as_row(referral).items()})
        count += 1
    return count


def write_jsonl(referrals: Iterable[ReferralRecord], stream: TextIO) -> int:
    """Write referrals as JSONL (one JSON object per line).

    Returns:
        Number of rows written
    """
    count = 0
    for referral in referrals:
        stream.write(json.dumps(_as_row(referral), ensure_ascii=False) + "\n")
        count += 1
    return count


def export_to_csv(referrals: list[ReferralRecord], output_path: Path) -> int:
    """Export referrals to a CSV file."""
    if not referrals:
        logger.warning("no_referrals_to_export")

    with open(output_path, "w", newline="", encoding="utf-8") as csvfile:
        count = write_csv(referrals, csvfile)

    logger.info("csv_export_completed", path=str(output_path), count=count)
    return count


def export_to_jsonl(referrals: list[ReferralRecord], output_path: Path) -> int:
    """Export referrals to a JSONL file."""
    if not referrals:
        logger.warning("no_referrals_to_export")

    with open(output_path, "w", encoding="utf-8") as jsonlfile:
        count = write_jsonl(referrals, jsonlfile)

    logger.info("jsonl_export_completed", path=str(output_path), count=count)
    return count
