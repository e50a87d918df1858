# Overview: Exception taxonomy shared by the inventory and payment services.

"""
Error classes raised by the service layer.

Routes map them onto HTTP statuses:
- NotFoundError subclasses -> 404
- ConflictError subclasses -> 409
- ValueError (input validation) -> 400
- StorageError -> 503

A conditional update that matches zero rows is never an error; services
return a zero count and callers interpret it.
"""


class NotFoundError(Exception):
    """Referenced row does not exist."""


class ConflictError(Exception):
    """Business precondition failed; state was not changed."""


class StorageError(Exception):
    """Underlying database failure, chained from the SQLAlchemy exception."""


# =============================================================================
# INVENTORY
# =============================================================================

class InventoryError(Exception):
    """Base for unit and pair inventory errors."""


class UnitNotFound(InventoryError, NotFoundError):
    def __init__(self, unit_id):
        super().__init__(f"Stock unit {unit_id} not found")
        self.unit_id = unit_id


class PairNotFound(InventoryError, NotFoundError):
    def __init__(self, pair_id):
        super().__init__(f"Stock unit pair {pair_id} not found")
        self.pair_id = pair_id


class DuplicateCode(InventoryError, ConflictError):
    def __init__(self, code: str):
        super().__init__(f"Code '{code}' already exists")
        self.code = code


class ComponentUnavailable(InventoryError, ConflictError):
    pass


class AlreadyPaired(InventoryError, ConflictError):
    pass


class CannotDismantleSold(InventoryError, ConflictError):
    def __init__(self, pair_id):
        super().__init__(f"Cannot dismantle sold pair {pair_id}")
        self.pair_id = pair_id


class PairNotSellable(InventoryError, ConflictError):
    pass


# =============================================================================
# PAYMENTS
# =============================================================================

class PaymentError(Exception):
    """Base for bill and payment entry errors."""


class BillNotFound(PaymentError, NotFoundError):
    def __init__(self, bill_id):
        super().__init__(f"Bill {bill_id} not found")
        self.bill_id = bill_id


class PaymentEntryNotFound(PaymentError, NotFoundError):
    def __init__(self, entry_id):
        super().__init__(f"Payment entry {entry_id} not found")
        self.entry_id = entry_id


class AlreadyPaid(PaymentError, ConflictError):
    def __init__(self, bill_id):
        super().__init__(f"Bill {bill_id} is already fully paid")
        self.bill_id = bill_id


class OverpaymentRejected(PaymentError, ConflictError):
    def __init__(self, amount_cents: int, remaining_cents: int):
        super().__init__(
            f"Payment of {amount_cents} cents exceeds remaining amount (remaining: {remaining_cents} cents)"
        )
        self.amount_cents = amount_cents
        self.remaining_cents = remaining_cents
