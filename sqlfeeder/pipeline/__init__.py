from .audit import ensure_audit_table, write_audit_record
from .context import RunContext, wait_for
from .contract import RunStatistics, State

__all__ = [
    "RunContext",
    "wait_for",
    "RunStatistics",
    "State",
    "ensure_audit_table",
    "write_audit_record",
]
