from typing import Optional


class ConnectionTestResult:
    """Result of a connection test."""

    def __init__(
        self,
        success: bool,
        message: Optional[str] = None,
        response_time: Optional[float] = None,
    ):
        """Initialize a ConnectionTestResult.

        Args:
        ----
            success: Whether the test was successful
            message: Optional message with details
            response_time: Seconds the test took, when measured

        """
        self.success = success
        self.message = message
        self.response_time = response_time

    def __bool__(self) -> bool:
        return self.success

    def __repr__(self) -> str:
        return f"ConnectionTestResult(success={self.success}, message={self.message!r})"
