"""Domain errors raised by the store modules and mapped to HTTP in the API."""


class LevelUpError(Exception):
    """Base class for portal errors."""


class NotFoundError(LevelUpError, LookupError):
    pass


class ConflictError(LevelUpError):
    """The action was already performed (second application, double payout...)."""


class ValidationError(LevelUpError, ValueError):
    pass


class InvalidTableError(ValidationError):
    def __init__(self, table_name: str):
        super().__init__(f'Invalid table name: "{table_name}"')
        self.table_name = table_name
