"""Error types raised by the card scanner core."""


class ScannerError(Exception):
    """Base class for card scanner errors."""


class DecodeFailure(ScannerError):
    """Input bytes could not be decoded as an image."""


class SolverSingularity(ScannerError):
    """The perspective system has no usable pivot.

    Raised when the four source points are coincident or collinear, so no
    unique mapping to the destination rectangle exists.
    """

    def __init__(self, message: str, column: int = -1):
        super().__init__(message)
        self.column = column
