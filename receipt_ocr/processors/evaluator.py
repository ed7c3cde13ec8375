"""
Field-by-field comparison of extracted receipts against ground truth.

For every ``<n>.json`` in the outputs directory the file of the same name
in the ground-truth directory is loaded and each evaluated field is
compared on its string form. Output-side invoice numbers are reduced to
``T`` plus digits before comparing. ``store_name`` is always reported as
a match (spelling of shop names varies too much for exact comparison)
but carries a fuzzy similarity score for manual review.
"""

import csv
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal, Optional

from rapidfuzz import fuzz

from receipt_ocr.core.config import (
    EVALUATED_FIELDS,
    MANIFEST_FILE,
    MATCH_SYMBOL,
    MISMATCH_SYMBOL,
    RECORD_SUFFIX,
)
from receipt_ocr.utils.io_utils import ensure_parent, read_json

logger = logging.getLogger(__name__)

HeaderStyle = Literal["en", "ja"]

CSV_HEADERS: dict[str, tuple[str, ...]] = {
    "en": ("file_name", "field", "outputs_value", "evaluate_value", "comparison_result"),
    "ja": ("番号", "項目", "AI読み取りデータ", "正解データ", "結果(完全一致)"),
}

ALWAYS_MATCH_FIELDS = frozenset({"store_name"})

_NOT_INVOICE_CHARS = re.compile(r"[^T0-9]")


def clean_invoice_number(invoice: Any) -> str:
    """Keep only ``T`` and digits: ``"T-1234 5678"`` -> ``"T12345678"``."""
    return _NOT_INVOICE_CHARS.sub("", value_to_text(invoice))


def value_to_text(value: Any) -> str:
    """String form used for comparison; whole floats print without ``.0``."""
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _sort_key(path: Path) -> tuple[int, int, str]:
    stem = path.stem
    if stem.isdigit():
        return (0, int(stem), path.name)
    return (1, 0, path.name)


@dataclass(frozen=True)
class ComparisonRow:
    file_name: str
    field: str
    outputs_value: str
    evaluate_value: str
    matched: bool
    similarity: Optional[float] = None

    @property
    def comparison_result(self) -> str:
        return MATCH_SYMBOL if self.matched else MISMATCH_SYMBOL


@dataclass
class EvaluationReport:
    files: list[str] = field(default_factory=list)
    rows: list[ComparisonRow] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)

    @property
    def mismatches(self) -> int:
        return sum(1 for row in self.rows if not row.matched)

    @property
    def field_mismatches(self) -> dict[str, int]:
        counts = {name: 0 for name in EVALUATED_FIELDS}
        for row in self.rows:
            if not row.matched:
                counts[row.field] = counts.get(row.field, 0) + 1
        return counts

    def summary(self) -> dict[str, Any]:
        return {
            "files_processed": len(self.files),
            "files_skipped": list(self.skipped),
            "differences": self.mismatches,
            "field_mismatches": self.field_mismatches,
        }


class ReceiptComparator:
    """Compare persisted receipt records with hand-made ground truth.

    Args:
        outputs_dir: Directory of extracted ``<n>.json`` records
        ground_truth_dir: Directory of expected records with the same names
        fields: Fields to compare, in row order
    """

    def __init__(
        self,
        outputs_dir: str | Path,
        ground_truth_dir: str | Path,
        fields: tuple[str, ...] = EVALUATED_FIELDS,
    ):
        self.outputs_dir = Path(outputs_dir)
        self.ground_truth_dir = Path(ground_truth_dir)
        self.fields = fields

    def output_files(self) -> list[Path]:
        files = [
            path
            for path in self.outputs_dir.glob(f"*{RECORD_SUFFIX}")
            if path.is_file() and path.name != MANIFEST_FILE
        ]
        return sorted(files, key=_sort_key)

    def compare_file(self, file_name: str) -> list[ComparisonRow]:
        """Compare one record pair.

        Raises:
            OSError: If either file cannot be read
            ValueError: If either file is not a JSON object
        """
        outputs = read_json(self.outputs_dir / file_name)
        expected = read_json(self.ground_truth_dir / file_name)
        if not isinstance(outputs, dict) or not isinstance(expected, dict):
            raise ValueError(f"{file_name} does not hold a JSON object")

        rows = []
        for name in self.fields:
            if name == "invoice_number":
                actual = clean_invoice_number(outputs.get(name))
            else:
                actual = value_to_text(outputs.get(name))
            wanted = value_to_text(expected.get(name))

            similarity = None
            if name in ALWAYS_MATCH_FIELDS:
                similarity = round(fuzz.ratio(actual, wanted), 1)
                matched = True
            else:
                matched = actual == wanted

            rows.append(
                ComparisonRow(
                    file_name=file_name,
                    field=name,
                    outputs_value=actual,
                    evaluate_value=wanted,
                    matched=matched,
                    similarity=similarity,
                )
            )
        return rows

    def compare(self) -> EvaluationReport:
        report = EvaluationReport()
        for path in self.output_files():
            try:
                rows = self.compare_file(path.name)
            except (OSError, ValueError) as e:
                # json.JSONDecodeError is a ValueError
                logger.error(f"Error comparing {path.name}: {e}")
                report.skipped.append(path.name)
                continue
            report.files.append(path.name)
            report.rows.extend(rows)

        logger.info(
            f"Comparison complete: {len(report.files)} files, "
            f"{len(report.skipped)} skipped, {report.mismatches} differences"
        )
        return report


def write_csv(
    path: str | Path, rows: list[ComparisonRow], headers: HeaderStyle = "en"
) -> Path:
    """Write comparison rows as CSV with every cell quoted.

    With ``headers="ja"`` the first column holds the item number (file name
    without ``.json``) under Japanese column titles.
    """
    if headers not in CSV_HEADERS:
        raise ValueError(f"Unknown header style: {headers}")

    target = Path(path)
    ensure_parent(target)
    with open(target, "w", encoding="utf-8", newline="") as f:
        writer = csv.writer(f, quoting=csv.QUOTE_ALL, lineterminator="\n")
        writer.writerow(CSV_HEADERS[headers])
        for row in rows:
            name = row.file_name
            if headers == "ja" and name.endswith(RECORD_SUFFIX):
                name = name[: -len(RECORD_SUFFIX)]
            writer.writerow(
                [name, row.field, row.outputs_value, row.evaluate_value, row.comparison_result]
            )
    logger.info(f"CSV file written to: {target}")
    return target
