import sys
import unittest
from datetime import date, datetime, timezone
from decimal import Decimal
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
ETL_PATH = ROOT / "etl"
if str(ETL_PATH) not in sys.path:
    sys.path.insert(0, str(ETL_PATH))

from connectors.sources.type_inference import (  # noqa: E402
    SAMPLE_SIZE,
    column_types,
    infer_columns,
    infer_type,
    parse_datetime,
)


class InferTypeTests(unittest.TestCase):
    def test_empty_and_missing_values_are_strings(self):
        self.assertEqual(infer_type([]), "string")
        self.assertEqual(infer_type([None, "", "   "]), "string")

    def test_numbers(self):
        self.assertEqual(infer_type([1, 2, 3]), "integer")
        self.assertEqual(infer_type(["1", " 2 ", None, "-7"]), "integer")
        self.assertEqual(infer_type(["1.5", "2"]), "decimal")
        self.assertEqual(infer_type([1.0, 2.0]), "decimal")
        self.assertEqual(infer_type([Decimal("3.10")]), "decimal")

    def test_zero_one_columns_are_numbers(self):
        self.assertEqual(infer_type(["1", "0", "1"]), "integer")

    def test_booleans(self):
        self.assertEqual(infer_type([True, False]), "boolean")
        self.assertEqual(infer_type(["yes", "No", "Y"]), "boolean")
        self.assertEqual(infer_type(["true", "0"]), "boolean")

    def test_dates(self):
        self.assertEqual(infer_type(["2024-01-01", "2024-02-03T10:00:00Z"]), "datetime")
        self.assertEqual(infer_type(["31/12/2024", "12/31/2024"]), "datetime")
        self.assertEqual(infer_type([datetime(2024, 1, 1), date(2024, 1, 2)]), "datetime")

    def test_strings(self):
        self.assertEqual(infer_type(["abc", 1]), "string")
        self.assertEqual(infer_type(["nan", "inf"]), "string")
        self.assertEqual(infer_type(["2024-13-45"]), "string")

    def test_only_sample_is_inspected(self):
        values = [1] * SAMPLE_SIZE + ["not a number"]

        self.assertEqual(infer_type(values), "integer")


class ParseDatetimeTests(unittest.TestCase):
    def test_iso_with_zulu(self):
        self.assertEqual(
            parse_datetime("2024-02-03T10:00:00Z"),
            datetime(2024, 2, 3, 10, 0, tzinfo=timezone.utc),
        )

    def test_day_first_wins_for_ambiguous_slashes(self):
        self.assertEqual(parse_datetime("01/02/2024"), datetime(2024, 2, 1))

    def test_month_first_fallback(self):
        self.assertEqual(parse_datetime("12/31/2024"), datetime(2024, 12, 31))

    def test_date_objects_and_garbage(self):
        self.assertEqual(parse_datetime(date(2024, 1, 2)), datetime(2024, 1, 2))
        self.assertIsNone(parse_datetime("tomorrow"))
        self.assertIsNone(parse_datetime(12345))


class InferColumnsTests(unittest.TestCase):
    def test_columns_in_first_seen_order_with_nullability(self):
        records = [{"a": 1, "c": "x"}, {"a": None, "b": "2024-01-01", "c": "y"}]

        columns = infer_columns(records)

        self.assertEqual([column.name for column in columns], ["a", "c", "b"])
        by_name = {column.name: column for column in columns}
        self.assertTrue(by_name["a"].nullable)
        self.assertEqual(by_name["a"].type, "integer")
        self.assertFalse(by_name["c"].nullable)
        self.assertTrue(by_name["b"].nullable)
        self.assertEqual(by_name["b"].type, "datetime")

    def test_column_types_mapping(self):
        self.assertEqual(column_types([{"id": "1", "ok": "yes"}]), {"id": "integer", "ok": "boolean"})
        self.assertEqual(column_types([]), {})


if __name__ == "__main__":
    unittest.main()
