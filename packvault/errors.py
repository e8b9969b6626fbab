"""Domain errors raised by the ledger, the pack engine and the vault.

Each error carries the HTTP status the API answers with; the message is the
``detail`` returned to the client.
"""


class PackVaultError(Exception):
    status_code = 400
    message = "Request failed"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.message)

    @property
    def detail(self) -> str:
        return str(self)


# validation

class InvalidAmount(PackVaultError):
    message = "Invalid amount"


class InvalidGameType(PackVaultError):
    message = "Invalid game type"


class InvalidPullRates(PackVaultError):
    message = "Invalid pull rates"


# conflicts

class InsufficientCredits(PackVaultError):
    message = "Insufficient credits"


class PackNotFoundOrAlreadyOpened(PackVaultError):
    status_code = 409
    message = "Pack not found or already opened"


class PackSoldOut(PackVaultError):
    status_code = 409
    message = "Pack is sold out"


class NothingToRefund(PackVaultError):
    message = "No refundable cards"


# missing records

class UserNotFound(PackVaultError):
    status_code = 404
    message = "User not found"


class PackNotFound(PackVaultError):
    status_code = 404
    message = "Pack not found"


class PackTypeNotFound(PackVaultError):
    status_code = 404
    message = "Pack type not found"


# exhausted or misconfigured stock

class ResourceExhausted(PackVaultError):
    status_code = 503


class NoPullRatesConfigured(ResourceExhausted):
    message = "No pull rates configured for this pack type"


class NoCardsInTierError(ResourceExhausted):
    message = "No available cards in tier"


class NoCardsInPrizePool(ResourceExhausted):
    message = "No cards left in prize pool"


class NoCardsInStock(ResourceExhausted):
    message = "No cards in stock"


class MalformedPullRates(ResourceExhausted):
    message = "Pull rates for this pack type do not sum to 100"


class GameNotConfigured(ResourceExhausted):
    message = "Game pricing not configured"


class CardNotFound(PackVaultError):
    status_code = 404
    message = "Card not found"
