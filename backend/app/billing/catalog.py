"""Static billing catalog — billing cycles, subscription prices, and token packages."""

from dataclasses import dataclass
from decimal import Decimal


class UnknownBillingCycleError(ValueError):
    """Raised when a billing cycle name is not in the catalog."""


class UnknownTokenPackageError(ValueError):
    """Raised when a token package id is not in the catalog."""


BILLING_CYCLE_MONTHS: dict[str, int] = {
    "monthly": 1,
    "quarterly": 3,
    "annually": 12,
}

BILLING_CYCLES: tuple[str, ...] = tuple(BILLING_CYCLE_MONTHS)


@dataclass(frozen=True)
class SubscriptionPrice:
    """Price of one billing cycle."""

    billing_cycle: str
    amount: Decimal
    months: int


@dataclass(frozen=True)
class TokenPackage:
    """A one-time token bundle. ``bonus`` is a percentage of ``tokens``."""

    id: str
    tokens: int
    price: Decimal
    bonus: int | None = None

    @property
    def bonus_tokens(self) -> int:
        if not self.bonus:
            return 0
        return self.tokens * self.bonus // 100

    @property
    def total_tokens(self) -> int:
        return self.tokens + self.bonus_tokens


SUBSCRIPTION_PRICES: dict[str, SubscriptionPrice] = {
    "monthly": SubscriptionPrice("monthly", Decimal("12.99"), 1),
    "quarterly": SubscriptionPrice("quarterly", Decimal("23.97"), 3),
    "annually": SubscriptionPrice("annually", Decimal("47.88"), 12),
}

# Reduced prices for end-to-end testing against live providers.
TEST_SUBSCRIPTION_PRICES: dict[str, SubscriptionPrice] = {
    "monthly": SubscriptionPrice("monthly", Decimal("3"), 1),
    "quarterly": SubscriptionPrice("quarterly", Decimal("6"), 3),
    "annually": SubscriptionPrice("annually", Decimal("9"), 12),
}

TOKEN_PACKAGES: dict[str, TokenPackage] = {
    "pack_100": TokenPackage("pack_100", 100, Decimal("9.99")),
    "pack_350": TokenPackage("pack_350", 350, Decimal("34.99")),
    "pack_550": TokenPackage("pack_550", 550, Decimal("49.99"), bonus=10),
    "pack_1150": TokenPackage("pack_1150", 1150, Decimal("99.99"), bonus=15),
    "pack_2400": TokenPackage("pack_2400", 2400, Decimal("199.99"), bonus=20),
    "pack_3750": TokenPackage("pack_3750", 3750, Decimal("299.99"), bonus=25),
}

TEST_TOKEN_PRICES: dict[str, Decimal] = {
    "pack_100": Decimal("1"),
    "pack_350": Decimal("2"),
    "pack_550": Decimal("3"),
    "pack_1150": Decimal("5"),
    "pack_2400": Decimal("7"),
    "pack_3750": Decimal("9"),
}


def get_subscription_months(billing_cycle: str) -> int:
    """Number of months covered by a billing cycle."""
    try:
        return BILLING_CYCLE_MONTHS[billing_cycle]
    except KeyError:
        raise UnknownBillingCycleError(f"Invalid billing cycle: {billing_cycle}") from None


def get_subscription_price(billing_cycle: str, test_mode: bool = False) -> SubscriptionPrice:
    """Price for a billing cycle from the production or test table."""
    table = TEST_SUBSCRIPTION_PRICES if test_mode else SUBSCRIPTION_PRICES
    try:
        return table[billing_cycle]
    except KeyError:
        raise UnknownBillingCycleError(f"Invalid billing cycle: {billing_cycle}") from None


def get_token_package(package_id: str, test_mode: bool = False) -> TokenPackage:
    """Look up a token package by id.

    In test mode the returned package carries the reduced test price; token
    counts and bonus are unchanged.

    Raises:
        UnknownTokenPackageError: If ``package_id`` is not in the catalog.
    """
    package = TOKEN_PACKAGES.get(package_id)
    if package is None:
        raise UnknownTokenPackageError(f"Invalid token package: {package_id}")
    if test_mode:
        return TokenPackage(package.id, package.tokens, TEST_TOKEN_PRICES[package.id], package.bonus)
    return package


def is_token_package(package_id: str) -> bool:
    return package_id in TOKEN_PACKAGES


def list_token_packages(test_mode: bool = False) -> list[TokenPackage]:
    """All token packages, smallest first."""
    return [get_token_package(package_id, test_mode) for package_id in TOKEN_PACKAGES]
