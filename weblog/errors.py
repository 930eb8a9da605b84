# weblog/errors.py


class WeblogError(Exception):
    """Base class for every error raised by weblog."""


class ParseError(WeblogError, ValueError):
    """A single log line could not be turned into a Record.

    Parse errors are not fatal: readers yield them in place of the record so
    the caller decides whether to skip, count or abort.
    """

    reason = "malformed"

    def __init__(self, line_no, line, detail=""):
        self.line_no = line_no
        self.line = line
        self.detail = detail
        where = f"line {line_no}" if line_no is not None else "line"
        msg = f"{where}: {self.reason}"
        if detail:
            msg += f" ({detail})"
        super().__init__(msg)


class FieldCountError(ParseError):
    reason = "field_count"


class BadStatusError(ParseError):
    reason = "bad_status"


class ConfigError(WeblogError):
    """Invalid analysis settings. Raised before any input is read."""


class StorageError(WeblogError):
    """A source could not be read or a sink could not be written."""

    def __init__(self, operation: str, path, reason):
        self.operation = operation
        self.path = path
        self.reason = reason
        super().__init__(f"{operation} failed for {path}: {reason}")
