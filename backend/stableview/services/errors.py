"""Exceptions raised by the refresh services."""

from typing import Iterable


class ProviderHTTPError(Exception):
    """An external provider answered with a non-success HTTP status."""

    def __init__(self, status: int, reason: str = ""):
        self.status = status
        self.reason = reason
        super().__init__(f"HTTP {status}: {reason}".rstrip(": "))


class SafetyViolationError(Exception):
    """An automated update tried to write fields outside the allow-list."""

    def __init__(self, fields: Iterable[str]):
        self.fields = sorted(fields)
        super().__init__(f"Safety violation: refusing to write fields {self.fields}")


class StablecoinNotFoundError(Exception):
    """No stablecoin exists with the requested id."""

    def __init__(self, stablecoin_id: int):
        self.stablecoin_id = stablecoin_id
        super().__init__(f"Stablecoin with id {stablecoin_id} not found")
