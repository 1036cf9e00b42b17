"""Utility modules for auditing, logging, subprocesses and durable writes."""
from .audit_log import AuditSink, AuditRecord, redact, sanitize_output, read_audit_log
from .files import write_atomic, stage_file, fsync_dir, remove_quietly
from .logging_config import setup_logging, timed, timed_section, perf_logger
from .process import CommandRunner, CommandResult, with_retry

__all__ = [
    "AuditSink",
    "AuditRecord",
    "redact",
    "sanitize_output",
    "read_audit_log",
    "write_atomic",
    "stage_file",
    "fsync_dir",
    "remove_quietly",
    "setup_logging",
    "timed",
    "timed_section",
    "perf_logger",
    "CommandRunner",
    "CommandResult",
    "with_retry",
]
