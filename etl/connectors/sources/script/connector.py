"""Connector that runs a user script in a subprocess and parses its stdout."""

import json
import os
import shutil
import subprocess
import tempfile
from pathlib import Path
from typing import Any, Iterator

from pydantic import ValidationError as PydanticValidationError

from ..._config import normalize_keys
from ..base_connector import BaseConnector, RunTracker, pydantic_errors, validation_error
from ..data_contract import ConnectorConfig, Record, ValidationError
from ..errors import ConnectorError, ErrorCode
from .config import ScriptConnection, ScriptOptions

SCRIPT_TYPES = ("python", "shell", "javascript")
_SUFFIXES = {"python": ".py", "javascript": ".js"}

_TEST_SCRIPTS = {
    "python": "import json, sys\nprint(json.dumps({'status': 'success', 'python_version': sys.version.split()[0]}))\n",
    "javascript": "console.log(JSON.stringify({status: 'success', node_version: process.version}));\n",
    "shell": "echo '{\"status\": \"success\"}'\n",
}


def parse_script_output(output: str) -> list[Record]:
    """JSON array or object first, then JSON lines; unparseable lines become ``{"output": line}``."""
    if not output.strip():
        return []

    try:
        parsed = json.loads(output)
    except json.JSONDecodeError:
        parsed = None
    else:
        if isinstance(parsed, list):
            return [item if isinstance(item, dict) else {"value": item} for item in parsed]
        if isinstance(parsed, dict):
            return [parsed]
        return [{"output": output.strip()}]

    records: list[Record] = []
    for line in output.strip().splitlines():
        text = line.strip()
        if not text:
            continue
        try:
            item = json.loads(text)
        except json.JSONDecodeError:
            records.append({"output": text})
            continue
        records.append(item if isinstance(item, dict) else {"value": item})
    return records


class ScriptConnector(BaseConnector):
    type_tag = "script"
    display_name = "Custom Script"
    description = "Execute Python, shell or JavaScript code and ingest what it prints"
    category = "custom"

    def _validate(self, config: ConnectorConfig) -> tuple[list[ValidationError], list[str]]:
        connection = normalize_keys(config.connection)
        options = normalize_keys(config.options)
        errors: list[ValidationError] = []

        script_type = connection.get("script_type")
        if not script_type:
            errors.append(
                validation_error("connection.script_type", "MISSING_SCRIPT_TYPE", "Script type is required (python, shell or javascript)")
            )
        elif script_type not in SCRIPT_TYPES:
            errors.append(
                validation_error("connection.script_type", "INVALID_SCRIPT_TYPE", "Script type must be python, shell or javascript")
            )

        script_path = connection.get("script_path")
        if not connection.get("script_content") and not script_path:
            errors.append(validation_error("connection.script_content", "MISSING_SCRIPT", "Script content or script path is required"))
        elif script_path and not Path(str(script_path)).expanduser().is_file():
            errors.append(validation_error("connection.script_path", "SCRIPT_FILE_NOT_FOUND", f"Script file not found: {script_path}"))

        working_directory = connection.get("working_directory")
        if working_directory and not Path(str(working_directory)).expanduser().is_dir():
            errors.append(
                validation_error(
                    "connection.working_directory",
                    "WORKING_DIR_NOT_FOUND",
                    f"Working directory not found: {working_directory}",
                )
            )

        timeout = connection.get("timeout")
        if timeout is not None:
            try:
                invalid_timeout = int(timeout) <= 0
            except (TypeError, ValueError):
                invalid_timeout = True
            if invalid_timeout:
                errors.append(validation_error("connection.timeout", "INVALID_TIMEOUT", "Timeout must be a positive number"))

        if errors:
            return errors, []

        try:
            parsed_options = ScriptOptions.model_validate(options)
        except PydanticValidationError as exc:
            return pydantic_errors(exc, "options", "INVALID_OPTION"), []

        if script_type == "python" and shutil.which(parsed_options.python_executable) is None:
            errors.append(
                validation_error(
                    "options.python_executable",
                    "PYTHON_NOT_FOUND",
                    f"Python executable not found: {parsed_options.python_executable}",
                )
            )
        if script_type == "javascript" and shutil.which(parsed_options.node_executable) is None:
            errors.append(validation_error("connection.script_type", "NODE_NOT_FOUND", "Node.js not found in system PATH"))
        if script_type == "shell" and shutil.which(parsed_options.shell) is None:
            errors.append(validation_error("options.shell", "SHELL_NOT_FOUND", f"Shell not found: {parsed_options.shell}"))
        return errors, []

    def _script_content(self, connection: ScriptConnection) -> str:
        if connection.script_path:
            return Path(connection.script_path).expanduser().read_text(encoding="utf-8")
        return connection.script_content or ""

    def execute_script(self, content: str) -> str:
        """Run ``content`` and return stdout; raises ``ConnectorError`` on failure or timeout."""
        connection = ScriptConnection.model_validate(self.connection)
        options = ScriptOptions.model_validate(self.options)
        script_file: Path | None = None

        if connection.script_type == "shell":
            command = [options.shell, "-c", content]
        else:
            handle, name = tempfile.mkstemp(prefix="ingest_script_", suffix=_SUFFIXES[connection.script_type])
            with os.fdopen(handle, "w", encoding="utf-8") as target:
                target.write(content)
            script_file = Path(name)
            executable = options.python_executable if connection.script_type == "python" else options.node_executable
            command = [executable, str(script_file)]
        command.extend(options.arguments)

        environment = {**os.environ, **options.environment}
        timeout_seconds = connection.timeout / 1000
        self.logger.info("Running %s script with timeout=%sms", connection.script_type, connection.timeout)

        try:
            completed = subprocess.run(
                command,
                cwd=connection.working_directory or None,
                env=environment,
                capture_output=True,
                text=True,
                timeout=timeout_seconds,
            )
        except subprocess.TimeoutExpired as exc:
            raise ConnectorError(
                f"Script execution timeout after {connection.timeout}ms",
                code=ErrorCode.TIMEOUT,
                details={"timeout_ms": connection.timeout},
            ) from exc
        except OSError as exc:
            raise ConnectorError(f"Failed to start script: {exc}") from exc
        finally:
            if script_file is not None:
                script_file.unlink(missing_ok=True)

        if completed.returncode != 0:
            raise ConnectorError(
                completed.stderr.strip() or f"Script exited with code {completed.returncode}",
                details={"exit_code": completed.returncode, "stderr": completed.stderr},
            )
        if len(completed.stdout.encode("utf-8")) > options.max_output_size:
            raise ConnectorError(
                f"Script output exceeds {options.max_output_size} bytes",
                details={"max_output_size": options.max_output_size},
            )
        if completed.stderr.strip():
            self.logger.warning("Script wrote to stderr: %s", completed.stderr.strip()[:500])
        return completed.stdout

    def _connection_check(self) -> str | None:
        connection = ScriptConnection.model_validate(self.connection)
        records = parse_script_output(self.execute_script(_TEST_SCRIPTS[connection.script_type]))
        version = records[0].get("python_version") or records[0].get("node_version") if records else None
        return str(version) if version else None

    def _iter_batches(self, run: RunTracker) -> Iterator[list[Record]]:
        connection = ScriptConnection.model_validate(self.connection)
        options = ScriptOptions.model_validate(self.options)
        run.log("info", f"Executing {connection.script_type} script")
        run.progress("executing", "Running script")

        output = self.execute_script(self._script_content(connection))
        records = parse_script_output(output)
        run.set_totals(total_records=len(records))
        run.metadata.update(
            {
                "script_type": connection.script_type,
                "output_bytes": len(output.encode("utf-8")),
                "columns": list(records[0].keys()) if records else [],
            }
        )
        for start in range(0, len(records), options.batch_size):
            yield records[start : start + options.batch_size]
