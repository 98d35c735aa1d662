"""
Typed Exception Hierarchy for the Invoice & Payment Ledger.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers must be able to react to ledger failures by TYPE, never by parsing a
message string.  Every exception carries:
  1. A CODE class attribute (machine-readable, API-safe)
  2. Structured DATA attributes (ids, amounts, states)

Example:
    try:
        ledger.refund_payment(business_id, payment_id, Decimal("50"))
    except RefundExceedsPaymentError as e:
        api_response(code=e.code, remaining=str(e.remaining))

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    LedgerError (base)
    |
    +-- ValidationError
    |   +-- InvalidCurrencyError
    |   +-- CurrencyMismatchError
    |   +-- PaymentExceedsInvoiceError
    |
    +-- InvalidTransitionError
    +-- InvoiceNotEditableError
    +-- RefundExceedsPaymentError
    |
    +-- NotFoundError
    |   +-- InvoiceNotFoundError
    |   +-- InvoiceLineNotFoundError
    |   +-- PaymentNotFoundError
    |
    +-- CrossBusinessAccessError
    |
    +-- ConcurrencyError
    |   +-- ReconciliationConflictError
    |
    +-- ReconciliationInvariantError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Code                                | When Raised
------------------------------------|------------------------------------------
VALIDATION_ERROR                    | Malformed input (negative qty, pct > 100)
INVALID_CURRENCY                    | Not an ISO 4217 code
CURRENCY_MISMATCH                   | Payment currency != invoice currency
PAYMENT_EXCEEDS_INVOICE             | Payment larger than the open obligation
INVALID_TRANSITION                  | Illegal invoice/payment state edge
INVOICE_NOT_EDITABLE                | Line/detail edit outside draft
REFUND_EXCEEDS_PAYMENT              | Refund above amount - refund_amount
INVOICE_NOT_FOUND                   | Unknown invoice id
INVOICE_LINE_NOT_FOUND              | Unknown line id on an invoice
PAYMENT_NOT_FOUND                   | Unknown payment id
CROSS_BUSINESS_ACCESS               | Entity resolved outside caller's business
RECONCILIATION_CONFLICT             | Version check detected a concurrent write
RECONCILIATION_INVARIANT_VIOLATION  | Reconciled state breaks the invariant table

===============================================================================
HANDLING PATTERNS
===============================================================================

1. Validation and transition errors are raised BEFORE any mutation.  The
   caller may surface them directly.

2. ReconciliationConflictError means the whole settle/refund unit of work was
   rolled back.  Retry the entire operation; the ledger never auto-retries.

3. CrossBusinessAccessError is a security signal, not a data error.  It is
   logged on the ``ledger_kernel.security`` logger before being raised.
"""

from decimal import Decimal


class LedgerError(Exception):
    """
    Base exception for all ledger errors.

    All subclasses must define a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "LEDGER_ERROR"


# Validation


class ValidationError(LedgerError):
    """Malformed input, rejected before any mutation."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid {field}: {reason}")


class InvalidCurrencyError(ValidationError):
    """Currency code is not a recognised ISO 4217 code."""

    code: str = "INVALID_CURRENCY"

    def __init__(self, currency: str):
        self.currency = currency
        super().__init__("currency", f"'{currency}' is not a valid ISO 4217 code")


class CurrencyMismatchError(ValidationError):
    """Two amounts that must share a currency do not."""

    code: str = "CURRENCY_MISMATCH"

    def __init__(self, expected: str, received: str):
        self.expected = expected
        self.received = received
        super().__init__(
            "currency", f"expected {expected}, received {received}"
        )


class PaymentExceedsInvoiceError(ValidationError):
    """A linked payment would exceed what the invoice still owes."""

    code: str = "PAYMENT_EXCEEDS_INVOICE"

    def __init__(self, invoice_id: str, amount: Decimal, available: Decimal):
        self.invoice_id = invoice_id
        self.amount = amount
        self.available = available
        super().__init__(
            "amount",
            f"payment of {amount} exceeds the {available} still payable "
            f"on invoice {invoice_id}",
        )


# State machine


class InvalidTransitionError(LedgerError):
    """Requested state edge is not in the workflow table."""

    code: str = "INVALID_TRANSITION"

    def __init__(
        self,
        entity_type: str,
        entity_id: str,
        from_state: str,
        to_state: str,
        reason: str | None = None,
    ):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.from_state = from_state
        self.to_state = to_state
        self.reason = reason
        message = (
            f"Illegal {entity_type} transition {from_state} -> {to_state} "
            f"for {entity_id}"
        )
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class InvoiceNotEditableError(LedgerError):
    """Lines and details may only change while the invoice is a draft."""

    code: str = "INVOICE_NOT_EDITABLE"

    def __init__(self, invoice_id: str, status: str):
        self.invoice_id = invoice_id
        self.status = status
        super().__init__(
            f"Invoice {invoice_id} is {status}; only draft invoices can be edited"
        )


class RefundExceedsPaymentError(LedgerError):
    """Refund would push refund_amount above the payment amount."""

    code: str = "REFUND_EXCEEDS_PAYMENT"

    def __init__(self, payment_id: str, requested: Decimal, remaining: Decimal):
        self.payment_id = payment_id
        self.requested = requested
        self.remaining = remaining
        super().__init__(
            f"Refund of {requested} on payment {payment_id} exceeds the "
            f"refundable remainder {remaining}"
        )


# Lookup


class NotFoundError(LedgerError):
    """Base exception for unknown entity ids."""

    code: str = "NOT_FOUND"


class InvoiceNotFoundError(NotFoundError):
    """Invoice with given ID was not found."""

    code: str = "INVOICE_NOT_FOUND"

    def __init__(self, invoice_id: str):
        self.invoice_id = invoice_id
        super().__init__(f"Invoice not found: {invoice_id}")


class InvoiceLineNotFoundError(NotFoundError):
    """Line with given ID does not belong to the invoice."""

    code: str = "INVOICE_LINE_NOT_FOUND"

    def __init__(self, invoice_id: str, line_id: str):
        self.invoice_id = invoice_id
        self.line_id = line_id
        super().__init__(f"Line {line_id} not found on invoice {invoice_id}")


class PaymentNotFoundError(NotFoundError):
    """Payment with given ID was not found."""

    code: str = "PAYMENT_NOT_FOUND"

    def __init__(self, payment_id: str):
        self.payment_id = payment_id
        super().__init__(f"Payment not found: {payment_id}")


# Security


class CrossBusinessAccessError(LedgerError):
    """
    Entity resolved outside the caller's business scope.

    Treated as a security violation, never as a plain data error.
    """

    code: str = "CROSS_BUSINESS_ACCESS"

    def __init__(self, entity_type: str, entity_id: str, business_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.business_id = business_id
        super().__init__(
            f"{entity_type} {entity_id} is not accessible from business {business_id}"
        )


# Concurrency


class ConcurrencyError(LedgerError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class ReconciliationConflictError(ConcurrencyError):
    """
    Optimistic version check failed while writing an invoice.

    The unit of work has been rolled back; the caller must retry the whole
    settle/refund operation.
    """

    code: str = "RECONCILIATION_CONFLICT"

    def __init__(self, invoice_id: str | None, business_id: str | None = None):
        self.invoice_id = invoice_id
        self.business_id = business_id
        if invoice_id is not None:
            subject = f"Invoice {invoice_id}"
        else:
            subject = f"An invoice of business {business_id}"
        super().__init__(
            f"{subject} was modified by another transaction; retry the operation"
        )


class ReconciliationInvariantError(LedgerError):
    """Reconciled invoice state violates the status/amount invariant table."""

    code: str = "RECONCILIATION_INVARIANT_VIOLATION"

    def __init__(self, invoice_id: str, status: str, reason: str):
        self.invoice_id = invoice_id
        self.status = status
        self.reason = reason
        super().__init__(
            f"Invoice {invoice_id} in status {status} violates ledger invariant: {reason}"
        )
