# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Copilot-for-Consensus contributors

"""Exceptions raised by the document store."""


class DocumentStoreError(Exception):
    """Base exception for document store errors."""
    pass


class ValidationError(DocumentStoreError, ValueError):
    """Exception raised when a filter, update, pipeline or document is malformed.

    Attributes:
        errors: List of validation error messages
    """

    def __init__(self, errors: list[str] | str):
        if isinstance(errors, str):
            errors = [errors]
        self.errors = errors
        super().__init__("; ".join(errors))


class TypeMismatchError(DocumentStoreError):
    """Exception raised when an operator meets a value of the wrong kind.

    The mutation engine recovers from this per document; it never reaches
    callers of the collection API.
    """

    def __init__(self, field: str, operator: str, value):
        self.field = field
        self.operator = operator
        self.value = value
        super().__init__(
            f"Cannot apply {operator} to field '{field}' holding {type(value).__name__}"
        )


class DuplicateKeyError(DocumentStoreError):
    """Exception raised when an inserted _id already exists."""
    pass


class IndexNotFoundError(DocumentStoreError):
    """Exception raised when dropping an index that does not exist."""
    pass


class InvalidOperationError(DocumentStoreError):
    """Exception raised when a cursor is modified after iteration started."""
    pass
