class SigVerifyError(Exception):
    """Base class for errors raised by this package"""

    code = "internal_error"


class StoreError(SigVerifyError):
    """The store was unreachable or rejected a command"""


class NotFoundError(SigVerifyError):
    code = "not_found"


class AccountNotFound(NotFoundError):
    code = "account_not_found"

    def __init__(self, account_id: str):
        super().__init__(f"Unknown account: {account_id}")
        self.account_id = account_id


class RecordNotFound(NotFoundError):
    code = "transaction_not_found"

    def __init__(self, transaction_id: str):
        super().__init__(f"Unknown transaction: {transaction_id}")
        self.transaction_id = transaction_id


class TransactionConflict(SigVerifyError):
    code = "transaction_complete"

    def __init__(self, transaction_id: str):
        super().__init__(f"Transaction already completed: {transaction_id}")
        self.transaction_id = transaction_id


class RecordDecodeError(SigVerifyError):
    """A stored verification record could not be parsed"""


class MalformedEntry(SigVerifyError):
    """A queue entry could not be decoded into a verification request"""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class IdentityClaimError(SigVerifyError):
    """Another live worker holds this identity, or the lease was lost"""
