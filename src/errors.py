from typing import List


class LogParseError(ValueError):
    """Base class for every transaction-log parse failure."""


class EmptyInputError(LogParseError):
    def __init__(self):
        super().__init__("The transaction log file is empty.")


class MissingDataError(LogParseError):
    def __init__(self):
        super().__init__("The log must contain a header and at least one data row.")


class MissingColumnsError(LogParseError):
    def __init__(self, missing: List[str]):
        self.missing = list(missing)
        super().__init__(f"Missing required column(s): {', '.join(self.missing)}.")


class MalformedRowError(LogParseError):
    def __init__(self, row: int, expected: int, actual: int):
        self.row = row
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Row {row} has an incorrect number of columns. Expected {expected}, but found {actual}."
        )


class InvalidValueError(LogParseError):
    def __init__(self, row: int, column: str, value: str, reason: str = "is not a valid number"):
        self.row = row
        self.column = column
        self.value = value
        super().__init__(f"Row {row}: value '{value}' in column '{column}' {reason}.")


class SummarizerError(RuntimeError):
    """The text-generation service could not produce a summary."""
