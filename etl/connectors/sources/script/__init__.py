from .config import ScriptConnection, ScriptOptions
from .connector import ScriptConnector, parse_script_output

__all__ = ["ScriptConnection", "ScriptOptions", "ScriptConnector", "parse_script_output"]
