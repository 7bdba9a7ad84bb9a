class InventoryException(Exception):
    pass


class InvariantViolation(InventoryException):
    """on_hand >= reserved >= 0 would break. Always a bug, never a business outcome."""

    def __init__(self, message: str, variant_id=None, reservation_id=None):
        super().__init__(message)
        self.variant_id = variant_id
        self.reservation_id = reservation_id


class AppendOnlyViolation(InventoryException):
    pass
