from typing import Final
from enum import StrEnum

GWEI: Final = 10**9

# Timeouts are in milliseconds to match the resubmission config surface
DEFAULT_RESUBMISSION_TIMEOUT: Final = 60_000
DEFAULT_MIN_GAS_PRICE_GWEI: Final = None
DEFAULT_MAX_GAS_PRICE_GWEI: Final = 200
DEFAULT_GAS_RETRY_INCREMENT: Final = 5
DEFAULT_NUM_CONFIRMATIONS: Final = 1

MPC_SIGN_MAX_TIMEOUT: Final = 120_000
MPC_SIGN_POLL_INTERVAL: Final = 2_000

RPC_TIMEOUT: Final = 10.0
RECEIPT_POLL_INTERVAL: Final = 1.0
PROBE_RETRIES: Final = 30
PROBE_RETRY_DELAY: Final = 2.0

# Substrings nodes use when a re-broadcast payload is already in their pool
ALREADY_KNOWN_ERRORS: Final = ("already known", "known transaction", "alreadyknown")


class AttemptState(StrEnum):
    CREATED    = "CREATED"
    SENT       = "SENT"
    CONFIRMED  = "CONFIRMED"
    SUPERSEDED = "SUPERSEDED"
    FAILED     = "FAILED"


class SubmissionState(StrEnum):
    PENDING   = "PENDING"
    CONFIRMED = "CONFIRMED"
    FAILED    = "FAILED"
    CANCELLED = "CANCELLED"


class SigningMode(StrEnum):
    LOCAL = "local"
    MPC   = "mpc"


__all__ = [
    "ALREADY_KNOWN_ERRORS",
    "DEFAULT_GAS_RETRY_INCREMENT",
    "DEFAULT_MAX_GAS_PRICE_GWEI",
    "DEFAULT_MIN_GAS_PRICE_GWEI",
    "DEFAULT_NUM_CONFIRMATIONS",
    "DEFAULT_RESUBMISSION_TIMEOUT",
    "GWEI",
    "MPC_SIGN_MAX_TIMEOUT",
    "MPC_SIGN_POLL_INTERVAL",
    "PROBE_RETRIES",
    "PROBE_RETRY_DELAY",
    "RECEIPT_POLL_INTERVAL",
    "RPC_TIMEOUT",

    ######
    "AttemptState",
    "SigningMode",
    "SubmissionState",
]
