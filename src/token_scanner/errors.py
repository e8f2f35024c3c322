"""Exception hierarchy for token-scanner."""


class ScannerError(Exception):
    pass


class ConfigError(ScannerError):
    pass


class TokenValidationError(ScannerError):
    """A scanner item violates the upstream contract and must not be rendered."""

    def __init__(self, pair_address: str, field: str):
        self.pair_address = pair_address
        self.field = field
        super().__init__(f"Scanner item {pair_address or '<unknown>'} is missing {field}")
