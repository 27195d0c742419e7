from __future__ import annotations


class FacturierError(Exception):
    """Base exception for the invoicing engine."""


class ConfigurationError(FacturierError):
    """Raised when settings or tax configuration are invalid (fail fast, at load time)."""


class DocumentNotFoundError(FacturierError):
    """Raised when an invoice/quote id does not exist for the given owner."""

    def __init__(self, document_type: str, document_id: str) -> None:
        super().__init__(f"{document_type} {document_id} not found")
        self.document_type = document_type
        self.document_id = document_id


class SequenceAllocationError(FacturierError):
    """Raised when the numbering transaction could not commit.

    The caller must retry the whole number-then-save operation.
    """

    retryable = True


class InvalidStatusTransitionError(FacturierError):
    def __init__(self, document_type: str, current: str, requested: str) -> None:
        super().__init__(f"{document_type}: transition {current} -> {requested} not allowed")
        self.current = current
        self.requested = requested


class PaymentError(FacturierError):
    """Raised for payments on documents that cannot receive them."""


class ImmutableDocumentError(FacturierError):
    """Raised when editing the content of a document that is no longer a draft."""

    def __init__(self, document_type: str, document_id: str, status: str) -> None:
        super().__init__(f"{document_type} {document_id} is {status}: only drafts can be edited")
        self.document_type = document_type
        self.document_id = document_id
        self.status = status
