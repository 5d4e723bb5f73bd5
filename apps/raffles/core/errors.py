from __future__ import annotations


class RaffleCoreError(Exception):
    """Base for every domain failure.

    ``public_message`` is what callers may show to end users. It stays the same
    for every instance of a class and never carries record ids or codes.
    """

    public_message = "The operation could not be completed."
    status_code = 400

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail or self.public_message)


class InvalidReferralCode(RaffleCoreError):
    public_message = "The referral code is not valid."


class EmailAlreadyRegistered(RaffleCoreError):
    public_message = "This email address is already in use."
    status_code = 409


class UserNotFound(RaffleCoreError):
    public_message = "User not found."
    status_code = 404


class RaffleNotFound(RaffleCoreError):
    public_message = "Raffle not found."
    status_code = 404


class PackNotFound(RaffleCoreError):
    public_message = "Ticket pack not found."
    status_code = 404


class OrderNotFound(RaffleCoreError):
    public_message = "Purchase order not found."
    status_code = 404


class CommissionNotFound(RaffleCoreError):
    public_message = "Commission not found."
    status_code = 404


class InvalidStateTransition(RaffleCoreError):
    public_message = "This action is not allowed in the current state."
    status_code = 409


class MissingRejectionReason(RaffleCoreError):
    public_message = "A reason is required to reject an order."


class RedemptionMismatch(RaffleCoreError):
    public_message = "The prize could not be redeemed."


class InsufficientChances(RaffleCoreError):
    public_message = "No roulette spins left for this raffle."
    status_code = 409


class TransferNotAllowed(RaffleCoreError):
    public_message = "The tickets could not be transferred."


class NoPrizesAvailable(RaffleCoreError):
    public_message = "There are no roulette prizes left in this raffle."
    status_code = 409
