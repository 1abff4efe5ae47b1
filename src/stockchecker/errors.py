from __future__ import annotations


class StockCheckerError(RuntimeError):
    pass


class ConfigError(StockCheckerError):
    pass


class Interrupted(StockCheckerError):
    retryable = False


class Cancelled(Interrupted):
    def __init__(self, message: str = "operation cancelled") -> None:
        super().__init__(message)


class DeadlineExceeded(Interrupted):
    retryable = True

    def __init__(self, message: str = "deadline exceeded") -> None:
        super().__init__(message)


class CatalogError(StockCheckerError):
    """Base for every failure reported by a catalog client.

    ``attempts`` is the number of requests sent for the logical call that
    failed; it stays 0 for errors raised without talking to the network.
    """

    retryable = False

    def __init__(self, message: str, attempts: int = 0) -> None:
        super().__init__(message)
        self.attempts = attempts


class TransientNetworkError(CatalogError):
    retryable = True


class RateLimitExceededError(CatalogError):
    retryable = True

    def __init__(self, retry_after: float, attempts: int = 0) -> None:
        super().__init__(f"rate limit exceeded, retry after {retry_after:.2f}s", attempts)
        self.retry_after = retry_after


class UpstreamStatusError(CatalogError):
    def __init__(self, status: int, body: str, attempts: int = 0) -> None:
        super().__init__(f"catalog returned status {status}: {body[:300]}", attempts)
        self.status = status
        self.body = body


class UpstreamClientError(UpstreamStatusError):
    pass


class UpstreamServerError(UpstreamStatusError):
    retryable = True


class NotFoundError(CatalogError):
    def __init__(self, identifier: str) -> None:
        super().__init__(f"not found: {identifier}")
        self.identifier = identifier


class CatalogDecodeError(CatalogError):
    pass


class TotalAggregationFailure(StockCheckerError):
    """Raised when every product in a stock check failed."""

    def __init__(self, skipped: list) -> None:
        self.skipped = skipped
        reasons = "; ".join(f"{s.sku}: {s.error}" for s in skipped[:5])
        super().__init__(f"stock check failed for all {len(skipped)} products ({reasons})")

    @property
    def retryable(self) -> bool:
        return bool(self.skipped) and all(s.retryable for s in self.skipped)
