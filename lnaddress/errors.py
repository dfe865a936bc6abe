"""Errors raised by the invoice and zap receipt engine.

Creation errors (UnknownUser, ZapsDisabled, InvalidZapRequest,
BackendUnavailable) reach the caller of the issuer. Settlement and publish
errors (DuplicateSettlement, CorrelationConflict, PublishFailure) are handled
inside the engine and only ever logged.
"""


class ZapServiceError(Exception):
    """Base class for all engine errors"""


class UnknownUser(ZapServiceError):
    def __init__(self, user):
        self.user = user
        super().__init__(f"User not found: {user}")


class UnknownInvoice(ZapServiceError):
    def __init__(self, invoice_id: int):
        self.invoice_id = invoice_id
        super().__init__(f"Invoice not found: {invoice_id}")


class NameTaken(ZapServiceError):
    def __init__(self, name: str):
        self.name = name
        super().__init__("NameTaken")


class PubkeyTaken(ZapServiceError):
    def __init__(self, pubkey: str):
        self.pubkey = pubkey
        super().__init__("PubkeyTaken")


class ZapsDisabled(ZapServiceError):
    def __init__(self, name: str):
        self.name = name
        super().__init__("Zaps are disabled for this user")


class InvalidZapRequest(ZapServiceError):
    pass


class BackendUnavailable(ZapServiceError):
    """The Lightning backend could not issue or report on a payment request"""


class DuplicateSettlement(ZapServiceError):
    """Settlement delivered for an invoice that already left PENDING"""

    def __init__(self, invoice_id: int, state):
        self.invoice_id = invoice_id
        self.state = state
        super().__init__(f"Invoice {invoice_id} already {state.name}")


class CorrelationConflict(ZapServiceError):
    """A compare-and-set lost the race: another worker already completed the transition"""

    def __init__(self, invoice_id: int, detail: str):
        self.invoice_id = invoice_id
        super().__init__(f"Invoice {invoice_id}: {detail}")


class PublishFailure(ZapServiceError):
    """No relay accepted the event"""
