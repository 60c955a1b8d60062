import re
import shutil
import sys
import tempfile
import textwrap
import unittest
from datetime import datetime
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
ETL_PATH = ROOT / "etl"
if str(ETL_PATH) not in sys.path:
    sys.path.insert(0, str(ETL_PATH))

from connectors.sources.data_contract import ExecutionContext  # noqa: E402
from connectors.sources.mock import MockConnector  # noqa: E402
from connectors.sources.mock.config import MockField  # noqa: E402
from connectors.sources.mock.connector import RecordGenerator, estimate_mock_record_size, format_date  # noqa: E402
from connectors.sources.script import ScriptConnector, parse_script_output  # noqa: E402


def _run(connector):
    batches = []
    progress = []
    context = ExecutionContext(
        execution_id="exec-1",
        data_source_id=connector.config.id,
        project_id="proj",
        on_batch=batches.append,
        on_progress=progress.append,
    )
    return connector.run(context), batches, progress


def _script(content, script_type="python", options=None, **connection):
    return ScriptConnector(
        {
            "id": "ds-script",
            "type": "script",
            "connection": {"scriptType": script_type, "scriptContent": textwrap.dedent(content), **connection},
            "options": options or {},
        }
    )


class ScriptConnectorTests(unittest.TestCase):
    def test_python_json_array_output(self):
        connector = _script(
            """
            import json
            print(json.dumps([{"id": i, "square": i * i} for i in range(5)]))
            """,
            options={"batchSize": 2},
        )

        result, batches, _ = _run(connector)

        self.assertTrue(result.success, result.error)
        self.assertEqual(result.records_processed, 5)
        self.assertEqual([len(batch) for batch in batches], [2, 2, 1])
        self.assertEqual(batches[2][0], {"id": 4, "square": 16})
        self.assertEqual(result.metadata["script_type"], "python")
        self.assertEqual(result.metadata["columns"], ["id", "square"])

    def test_arguments_and_environment_reach_the_script(self):
        connector = _script(
            """
            import json, os, sys
            print(json.dumps({"arg": sys.argv[1], "greeting": os.environ["GREETING"]}))
            """,
            options={"arguments": ["first"], "environment": {"GREETING": "hello"}},
        )

        result, batches, _ = _run(connector)

        self.assertEqual(batches, [[{"arg": "first", "greeting": "hello"}]])

    def test_script_path_and_working_directory(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            script = Path(tmpdir) / "extract.py"
            script.write_text("import json, os\nprint(json.dumps({'cwd': os.getcwd()}))\n", encoding="utf-8")
            connector = ScriptConnector(
                {
                    "id": "ds-script",
                    "type": "script",
                    "connection": {"scriptType": "python", "scriptPath": str(script), "workingDirectory": tmpdir},
                }
            )

            result, batches, _ = _run(connector)

            self.assertTrue(result.success, result.error)
            self.assertEqual(Path(batches[0][0]["cwd"]).resolve(), Path(tmpdir).resolve())

    def test_timeout_is_reported(self):
        connector = _script("import time\ntime.sleep(5)\n", timeout=500)

        result, batches, _ = _run(connector)

        self.assertFalse(result.success)
        self.assertEqual(result.error.code, "TIMEOUT")
        self.assertEqual(result.error.details, {"timeout_ms": 500})
        self.assertEqual(batches, [])

    def test_non_zero_exit_fails_with_stderr(self):
        connector = _script("import sys\nsys.stderr.write('boom')\nsys.exit(3)\n")

        result, _, _ = _run(connector)

        self.assertEqual(result.error.code, "EXECUTION_ERROR")
        self.assertEqual(result.error.message, "boom")
        self.assertEqual(result.error.details["exit_code"], 3)

    def test_output_size_limit(self):
        connector = _script("print('x' * 100)\n", options={"maxOutputSize": 10})

        result, _, _ = _run(connector)

        self.assertFalse(result.success)
        self.assertIn("exceeds", result.error.message)

    @unittest.skipUnless(shutil.which("bash"), "bash is not available")
    def test_shell_script(self):
        connector = _script("""echo '{"a": 1}'\necho '{"a": 2}'\n""", script_type="shell")

        result, batches, _ = _run(connector)

        self.assertEqual(batches, [[{"a": 1}, {"a": 2}]])

    def test_test_connection_reports_python_version(self):
        result = _script("print(1)").test_connection()

        self.assertTrue(result.success, result.error)
        self.assertEqual(result.version, sys.version.split()[0])

    def test_validation_codes(self):
        missing_dir = str(Path(tempfile.gettempdir()) / "no-such-dir-for-scripts")
        cases = [
            ({}, {}, ["MISSING_SCRIPT_TYPE", "MISSING_SCRIPT"]),
            ({"script_type": "ruby", "script_content": "puts 1"}, {}, ["INVALID_SCRIPT_TYPE"]),
            ({"script_type": "python", "script_path": "/nonexistent/job.py"}, {}, ["SCRIPT_FILE_NOT_FOUND"]),
            ({"script_type": "python", "script_content": "1", "working_directory": missing_dir}, {}, ["WORKING_DIR_NOT_FOUND"]),
            ({"script_type": "python", "script_content": "1", "timeout": 0}, {}, ["INVALID_TIMEOUT"]),
            ({"script_type": "python", "script_content": "1"}, {"python_executable": "no-such-python-xyz"}, ["PYTHON_NOT_FOUND"]),
            ({"script_type": "shell", "script_content": "true"}, {"shell": "no-such-shell-xyz"}, ["SHELL_NOT_FOUND"]),
        ]
        for connection, options, expected in cases:
            with self.subTest(connection=connection, options=options):
                connector = ScriptConnector({"id": "s", "type": "script", "connection": connection, "options": options})
                self.assertEqual(connector.validate_config().codes(), expected)

    def test_parse_script_output(self):
        self.assertEqual(parse_script_output("  \n"), [])
        self.assertEqual(parse_script_output('[{"a": 1}, 2]'), [{"a": 1}, {"value": 2}])
        self.assertEqual(parse_script_output('{"a": 1}'), [{"a": 1}])
        self.assertEqual(parse_script_output("42"), [{"output": "42"}])
        self.assertEqual(
            parse_script_output('{"a": 1}\nnot json\n\n3\n'),
            [{"a": 1}, {"output": "not json"}, {"value": 3}],
        )


def _mock(fields, record_count=20, **connection):
    return MockConnector(
        {
            "id": "ds-mock",
            "type": "mock",
            "connection": {"recordCount": record_count, **connection},
            "options": {"fields": fields},
        }
    )


PEOPLE = [
    {"name": "id", "type": "id", "options": {"prefix": "CUST-"}},
    {"name": "name", "type": "name"},
    {"name": "email", "type": "email"},
    {"name": "phone", "type": "phone"},
    {"name": "uid", "type": "uuid"},
    {"name": "signup", "type": "date", "options": {"format": "DD/MM/YYYY"}},
    {"name": "seen_at", "type": "datetime"},
    {"name": "tier", "type": "enum", "options": {"enumValues": ["gold", "silver"]}},
    {"name": "visits", "type": "number", "options": {"min": 5, "max": 9}},
    {"name": "score", "type": "decimal", "options": {"min": 0, "max": 1, "decimals": 3}},
    {"name": "balance", "type": "currency"},
    {"name": "share", "type": "percentage"},
    {"name": "active", "type": "boolean"},
    {"name": "site", "type": "url"},
    {"name": "bio", "type": "text", "options": {"length": 4}},
    {"name": "office", "type": "address"},
    {"name": "employer", "type": "company"},
]


class MockConnectorTests(unittest.TestCase):
    def test_same_seed_reproduces_records(self):
        first, first_batches, _ = _run(_mock(PEOPLE, seed=42))
        second, second_batches, _ = _run(_mock(PEOPLE, seed=42))
        other, other_batches, _ = _run(_mock(PEOPLE, seed=7))

        self.assertTrue(first.success, first.error)
        self.assertEqual(first_batches, second_batches)
        self.assertNotEqual(first_batches, other_batches)
        self.assertEqual(first.metadata["seed"], 42)

    def test_preview_matches_run(self):
        connector = _mock(PEOPLE, seed=3)

        preview = connector.preview_data(limit=5)
        _, batches, _ = _run(connector)

        self.assertEqual(preview, batches[0][:5])

    def test_unseeded_connector_is_stable_per_instance(self):
        connector = _mock(PEOPLE, record_count=5)

        first, first_batches, _ = _run(connector)
        _, second_batches, _ = _run(connector)

        self.assertEqual(first_batches, second_batches)
        self.assertIsInstance(first.metadata["seed"], int)

    def test_batches_are_capped_at_one_thousand(self):
        result, batches, progress = _run(_mock([{"name": "id", "type": "id"}], record_count=2500, batchSize=5000))

        self.assertEqual([len(batch) for batch in batches], [1000, 1000, 500])
        self.assertEqual(result.records_processed, 2500)
        self.assertEqual(batches[2][-1]["id"], "2500")
        self.assertEqual(progress[-1].percent, 100)

    def test_explicit_batch_size(self):
        _, batches, _ = _run(_mock([{"name": "id", "type": "id"}], record_count=700, batchSize=300))

        self.assertEqual([len(batch) for batch in batches], [300, 300, 100])

    def test_field_shapes(self):
        _, batches, _ = _run(_mock(PEOPLE, record_count=50, seed=11))
        records = batches[0]

        self.assertEqual([record["id"] for record in records[:3]], ["CUST-1", "CUST-2", "CUST-3"])
        for record in records:
            self.assertRegex(record["email"], r"^[a-z]+\.[a-z]+@[a-z]+\.[a-z]+$")
            self.assertRegex(record["phone"], r"^\(\d{3}\) \d{3}-\d{4}$")
            self.assertRegex(record["uid"], r"^[0-9a-f]{8}-[0-9a-f]{4}-4[0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$")
            self.assertRegex(record["signup"], r"^\d{2}/\d{2}/20(2[0-5])$")
            self.assertTrue(2020 <= datetime.fromisoformat(record["seen_at"]).year <= 2025)
            self.assertIn(record["tier"], {"gold", "silver"})
            self.assertTrue(5 <= record["visits"] <= 9)
            self.assertTrue(0 <= record["score"] <= 1)
            self.assertRegex(record["balance"], r"^\$\d+\.\d{2}$")
            self.assertRegex(record["share"], r"^\d{1,3}%$")
            self.assertIsInstance(record["active"], bool)
            self.assertRegex(record["site"], r"^https?://")
            self.assertEqual(len(record["bio"].split()), 4)

    def test_nullable_fields(self):
        fields = [
            {"name": "maybe", "type": "name", "options": {"nullable": True, "nullProbability": 1}},
            {"name": "never", "type": "name", "options": {"nullable": False, "nullProbability": 1}},
        ]

        _, batches, _ = _run(_mock(fields, record_count=10, seed=1))

        self.assertTrue(all(record["maybe"] is None for record in batches[0]))
        self.assertTrue(all(record["never"] is not None for record in batches[0]))

    def test_validation_codes(self):
        cases = [
            ({"recordCount": 0}, [{"name": "a", "type": "id"}], ["INVALID_RECORD_COUNT"]),
            ({"recordCount": 5, "batchSize": 0}, [{"name": "a", "type": "id"}], ["INVALID_BATCH_SIZE"]),
            ({"recordCount": 5}, [], ["NO_FIELDS_DEFINED"]),
            ({"recordCount": 5}, [{}], ["MISSING_FIELD_NAME", "MISSING_FIELD_TYPE"]),
            ({"recordCount": 5}, [{"name": "a", "type": "color"}], ["INVALID_FIELD_TYPE"]),
            ({"recordCount": 5}, [{"name": "a", "type": "enum"}], ["MISSING_ENUM_VALUES"]),
            ({"recordCount": 5}, [{"name": "a", "type": "number", "options": {"min": 10, "max": 1}}], ["INVALID_RANGE"]),
        ]
        for connection, fields, expected in cases:
            with self.subTest(connection=connection, fields=fields):
                connector = MockConnector(
                    {"id": "m", "type": "mock", "connection": connection, "options": {"fields": fields}}
                )
                self.assertEqual(connector.validate_config().codes(), expected)

    def test_test_connection(self):
        self.assertTrue(_mock(PEOPLE, seed=1).test_connection().success)

    def test_helpers(self):
        fields = [MockField(name="bio", type="text", options={"length": 2}), MockField(name="id", type="id")]
        generator = RecordGenerator(fields, seed=5)

        self.assertEqual(format_date(datetime(2024, 3, 5), "D.M.YYYY"), "5.3.2024")
        self.assertEqual(format_date(datetime(2024, 3, 5), "YYYY-MM-DD"), "2024-03-05")
        self.assertEqual(estimate_mock_record_size(fields), 2 * 6 + 3 + 4 + 20 + 2 + 4)
        self.assertEqual(generator.records(2, start=10)[1]["id"], "12")


if __name__ == "__main__":
    unittest.main()
