"""
Exception helpers shared by the reconciliation services.

Provides root-cause extraction so that a failed run can record both the
error it was aborted with and the underlying driver/library error.
"""


def _message_or_class_name(error: BaseException) -> str:
    message = str(error)
    return message if message else type(error).__name__


def _next_cause(error: BaseException) -> BaseException | None:
    """Follow explicit chaining first, implicit context unless suppressed."""
    if error.__cause__ is not None:
        return error.__cause__
    if not error.__suppress_context__:
        return error.__context__
    return None


def get_root_cause(error: BaseException) -> BaseException:
    """
    Walk the cause chain of an exception to its deepest cause.

    Causes with an empty message are skipped when choosing the root, so a
    bare wrapper at the bottom of the chain does not hide a more useful
    message above it.

    Args:
        error: Exception to inspect

    Returns:
        Deepest cause with a message, or the exception itself
    """
    root = error
    seen = {id(error)}
    current = _next_cause(error)

    while current is not None and id(current) not in seen:
        seen.add(id(current))
        if str(current):
            root = current
        current = _next_cause(current)

    return root


def extract_failure_cause(error: BaseException) -> str:
    """
    Describe an exception and its root cause in a single line.

    Example:
        >>> try:
        ...     try:
        ...         raise ValueError("relation \\"orders\\" does not exist")
        ...     except ValueError as e:
        ...         raise RuntimeError("Failed to load data") from e
        ... except RuntimeError as e:
        ...     extract_failure_cause(e)
        'Failed to load data, rootCause=[relation "orders" does not exist]'
    """
    root = get_root_cause(error)
    if root is error:
        return _message_or_class_name(error)
    return f"{_message_or_class_name(error)}, rootCause=[{_message_or_class_name(root)}]"
