"""Typed exceptions for order building, fee composition and execution."""

from __future__ import annotations

from typing import Literal

UnfillableReason = Literal[
    "InsufficientBalance",
    "NotApproved",
    "Cancelled",
    "Expired",
    "NonceInvalid",
    "Filled",
]


class OrderRouterError(Exception):
    """Base class for every error raised by this package."""


class InvalidArgument(OrderRouterError):
    """Raised when an order request is malformed or missing required fields."""


class SignatureError(OrderRouterError):
    """Raised when the signing account is not the declared maker or cosigner."""


class InvalidSignature(OrderRouterError):
    """Raised when a recovered signer does not match the order."""


class FeeOverflow(OrderRouterError):
    """Raised when composed fees exceed the adapter's maximum numerator."""

    def __init__(self, total_bps: int, max_bps: int) -> None:
        super().__init__(
            f"Composed fees of {total_bps} bps exceed the maximum of {max_bps} bps."
        )
        self.total_bps = total_bps
        self.max_bps = max_bps


class Unfillable(OrderRouterError):
    """Raised by fillability checks; carries a machine-readable reason."""

    def __init__(self, reason: UnfillableReason, message: str = "") -> None:
        super().__init__(f"{reason}: {message}" if message else reason)
        self.reason = reason


class NoFillableOrders(OrderRouterError):
    """Raised when every candidate order fails its fillability check."""


class UnsuccessfulExecution(OrderRouterError):
    """Raised when an on-chain call reverts; carries the revert reason verbatim."""

    def __init__(self, reason: str = "UnsuccessfulExecution()") -> None:
        super().__init__(reason)
        self.reason = reason


class StepSaveError(OrderRouterError):
    """Raised when the indexer rejects a signature step."""


class ConfigLoadError(OrderRouterError):
    """Raised when a router configuration file cannot be loaded or validated."""


class DeploymentError(OrderRouterError):
    """Raised on invalid or duplicate contract deployments."""
