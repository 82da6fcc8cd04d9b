class CarshipError(Exception):
    """Base class for carship-specific errors."""


class ConfigError(CarshipError):
    pass


class PackFailure(CarshipError):
    """The source file could not be read, chunked or hashed."""

    def __init__(self, source_path: str, cause: BaseException):
        super().__init__(f"failed to pack {source_path}: {cause}")
        self.source_path = source_path
        self.cause = cause


class ContainerCorrupt(CarshipError):
    """A CAR container failed structural or digest validation."""


class TransferFailure(CarshipError):
    """Transport or protocol error talking to the storage service."""


class IdentifierMismatch(CarshipError):
    def __init__(self, expected: str, actual: str):
        super().__init__(f"cids do not match {expected} and {actual}")
        self.expected = expected
        self.actual = actual


class CleanupFailure(CarshipError):
    def __init__(self, path: str, cause: BaseException):
        super().__init__(f"failed to remove temporary container {path}: {cause}")
        self.path = path
        self.cause = cause
