from .runner import run_ingestion

__all__ = ["run_ingestion"]
