"""Storage-level exceptions raised by repositories."""


class ConflictError(Exception):
    """A unique constraint rejected the write."""

    def __init__(self, constraint: str | None = None):
        self.constraint = constraint
        super().__init__(f"Unique constraint violated: {constraint or 'unknown'}")
