from .config import MockConnection, MockField, MockOptions
from .connector import MockConnector, RecordGenerator

__all__ = ["MockConnection", "MockField", "MockOptions", "MockConnector", "RecordGenerator"]
