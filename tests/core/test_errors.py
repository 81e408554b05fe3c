"""Tests for pipepool.core.errors module."""

import pytest

from pipepool.core.errors import (
    ConfigError,
    ErrorCategory,
    ErrorContext,
    JobValidationError,
    PoolError,
    ProtocolViolation,
    StartupFailure,
    TransportFailure,
    categorize_error,
)


class TestErrorContext:
    """Test ErrorContext dataclass."""

    def test_empty_context(self):
        ctx = ErrorContext()
        assert ctx.to_dict() == {}

    def test_to_dict_includes_set_fields_only(self):
        ctx = ErrorContext(job_type=2, pid=123, metadata={"attempt": 1})
        assert ctx.to_dict() == {"job_type": 2, "pid": 123, "attempt": 1}


class TestPoolError:
    """Test the base error and its subclasses."""

    def test_default_category(self):
        assert PoolError("x").category is ErrorCategory.INTERNAL
        assert StartupFailure("x").category is ErrorCategory.STARTUP
        assert TransportFailure("x").category is ErrorCategory.TRANSPORT
        assert ProtocolViolation("x").category is ErrorCategory.PROTOCOL
        assert ConfigError("x").category is ErrorCategory.CONFIG
        assert JobValidationError("x").category is ErrorCategory.VALIDATION

    def test_protocol_violation_is_a_transport_failure(self):
        """Partial records are handled exactly like transport failures."""
        with pytest.raises(TransportFailure):
            raise ProtocolViolation("partial record")

    def test_job_validation_error_is_value_error(self):
        with pytest.raises(ValueError):
            raise JobValidationError("bad duration")

    def test_job_validation_error_line(self):
        err = JobValidationError("bad", line=7)
        assert err.line == 7
        assert err.to_dict()["context"] == {"line": 7}

    def test_with_context_sets_fields_and_metadata(self):
        err = TransportFailure("send failed").with_context(worker_index=3, pid=99, channel="request")
        assert err.context.worker_index == 3
        assert err.context.pid == 99
        assert err.context.metadata == {"channel": "request"}

    def test_cause_is_chained(self):
        cause = BrokenPipeError(32, "Broken pipe")
        err = TransportFailure("send failed", cause=cause)
        assert err.__cause__ is cause
        assert "Broken pipe" in err.to_dict()["cause"]

    def test_to_dict(self):
        err = StartupFailure("spawn failed").with_context(job_type=4)
        assert err.to_dict() == {
            "error_type": "StartupFailure",
            "message": "spawn failed",
            "category": "STARTUP",
            "context": {"job_type": 4},
        }

    def test_repr(self):
        assert repr(ConfigError("nope")) == "ConfigError('nope', category=CONFIG)"


class TestCategorizeError:
    def test_pool_error_keeps_category(self):
        assert categorize_error(ProtocolViolation("x")) is ErrorCategory.PROTOCOL

    def test_os_errors_are_transport(self):
        assert categorize_error(BrokenPipeError()) is ErrorCategory.TRANSPORT
        assert categorize_error(OSError(9, "Bad file descriptor")) is ErrorCategory.TRANSPORT

    def test_value_error_is_validation(self):
        assert categorize_error(ValueError("x")) is ErrorCategory.VALIDATION

    def test_anything_else_is_internal(self):
        assert categorize_error(RuntimeError("x")) is ErrorCategory.INTERNAL
