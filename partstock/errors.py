from __future__ import annotations


class InventoryError(RuntimeError):
    retryable = False


class DatabaseLockedError(InventoryError):
    retryable = True


class NotFoundError(InventoryError):
    pass


class DuplicateNameError(InventoryError):
    pass


class DuplicateStockError(DuplicateNameError):
    pass


class DuplicateMpnError(InventoryError):
    pass


class ForeignKeyViolationError(InventoryError):
    pass


class ReferentialConflictError(InventoryError):
    pass


class NegativeQuantityError(InventoryError):
    pass
