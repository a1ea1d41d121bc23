"""
Ledger errors.

Only validation problems are exceptions. Running out of credit is a False
return from CreditAccount.use_credit, and integrity findings are returned
as data by the analyzer. Persistence errors (SQLAlchemyError) propagate
untouched after the session is rolled back.
"""


class LedgerError(Exception):
    """Base for every error raised by the ledger engine."""


class ValidationError(LedgerError):
    """Rejected before any mutation."""


class InvalidMonth(ValidationError):
    def __init__(self, month):
        self.month = month
        super().__init__(f"Month '{month}' is not part of the installment schedule")


class InvalidAmount(ValidationError):
    def __init__(self, amount, reason: str = "amount must be greater than zero"):
        self.amount = amount
        super().__init__(f"Invalid amount {amount}: {reason}")


class UnknownParticipant(ValidationError):
    def __init__(self, participant_id):
        self.participant_id = participant_id
        super().__init__(f"Participant {participant_id} not found")


class UnknownChangeRequest(ValidationError):
    def __init__(self, request_id):
        self.request_id = request_id
        super().__init__(f"Change request {request_id} not found")
