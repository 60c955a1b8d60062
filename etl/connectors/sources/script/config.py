import sys
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

ScriptType = Literal["python", "shell", "javascript"]


class ScriptConnection(BaseModel):
    model_config = ConfigDict(extra="ignore")

    script_type: ScriptType
    script_content: str | None = None
    script_path: str | None = None
    working_directory: str | None = None
    timeout: int = Field(default=30000, gt=0)


class ScriptOptions(BaseModel):
    model_config = ConfigDict(extra="ignore")

    python_executable: str = sys.executable or "python3"
    node_executable: str = "node"
    shell: str = "bash"
    environment: dict[str, str] = Field(default_factory=dict)
    arguments: list[str] = Field(default_factory=list)
    max_output_size: int = Field(default=50 * 1024 * 1024, ge=1)
    batch_size: int = Field(default=1000, ge=1)
