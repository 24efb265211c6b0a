"""
Unit tests for failure cause extraction
"""

from utils.errors import extract_failure_cause, get_root_cause


def chain(*messages):
    """Raise and return an exception chained through the given messages, innermost first."""
    error = None
    for message in messages:
        try:
            if error is None:
                raise RuntimeError(message)
            raise RuntimeError(message) from error
        except RuntimeError as e:
            error = e
    return error


class TestGetRootCause:
    def test_no_cause(self):
        error = ValueError("x")

        assert get_root_cause(error) is error

    def test_explicit_chain(self):
        error = chain("socket closed", "cursor failed", "Failed to load data")

        assert str(get_root_cause(error)) == "socket closed"

    def test_implicit_context(self):
        try:
            try:
                raise KeyError("inner")
            except KeyError:
                raise RuntimeError("outer")
        except RuntimeError as e:
            error = e

        assert isinstance(get_root_cause(error), KeyError)

    def test_suppressed_context(self):
        try:
            try:
                raise KeyError("inner")
            except KeyError:
                raise RuntimeError("outer") from None
        except RuntimeError as e:
            error = e

        assert get_root_cause(error) is error

    def test_skips_empty_root_message(self):
        error = chain("", "useful", "top")

        assert str(get_root_cause(error)) == "useful"


class TestExtractFailureCause:
    def test_with_root_cause(self):
        error = chain("connection refused", "Failed to load data")

        assert extract_failure_cause(error) == "Failed to load data, rootCause=[connection refused]"

    def test_without_cause(self):
        assert extract_failure_cause(RuntimeError("boom")) == "boom"

    def test_empty_message_uses_class_name(self):
        assert extract_failure_cause(TimeoutError()) == "TimeoutError"
