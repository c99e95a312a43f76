"""Decimal-safe conversion between human amounts and on-chain integer units.

Amounts are split into whole and fractional digit strings and recombined with
integer arithmetic. Binary floating point never touches the final integer: an
off-by-one raw unit would break the exact-match comparisons the verifiers rely
on.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Optional, Union

from .config import BASE_USDC_ADDRESS, ZERO_ADDRESS
from .exceptions import InvalidAmountError, UnsupportedCurrencyError

HumanAmount = Union[str, int, float, Decimal]


@dataclass(frozen=True, slots=True)
class CurrencyProfile:
    """Unit profile for a payable currency."""

    symbol: str
    decimals: int
    is_native: bool


CURRENCY_PROFILES: dict[str, CurrencyProfile] = {
    "ETH": CurrencyProfile(symbol="ETH", decimals=18, is_native=True),
    "BASE_ETH": CurrencyProfile(symbol="BASE_ETH", decimals=18, is_native=True),
    "USDC": CurrencyProfile(symbol="USDC", decimals=6, is_native=False),
}

# 2**256 - 1 has 78 digits
MAX_UINT256_DIGITS = 78

DEFAULT_TOKEN_DECIMALS = 18
BETR_TOKEN_ADDRESS = "0x051024b653e8ec69e72693f776c41c2a9401fb07"

KNOWN_TOKEN_DECIMALS: dict[str, int] = {
    BASE_USDC_ADDRESS: 6,
    BETR_TOKEN_ADDRESS: 18,
}


def get_currency_profile(currency: str) -> CurrencyProfile:
    try:
        return CURRENCY_PROFILES[(currency or "").upper()]
    except KeyError as exc:
        raise UnsupportedCurrencyError(currency, list(CURRENCY_PROFILES)) from exc


def token_decimals(token_address: str, stable_token_contract: Optional[str] = None) -> int:
    """
    Decimals of an ERC-20 token by address.

    The configured stable token is USDC-like (6). Unknown tokens fall back to 18,
    which is what almost every ERC-20 uses.
    """
    token = (token_address or "").lower()
    if stable_token_contract and token == stable_token_contract.lower():
        return CURRENCY_PROFILES["USDC"].decimals
    return KNOWN_TOKEN_DECIMALS.get(token, DEFAULT_TOKEN_DECIMALS)


def _parse_amount(amount: HumanAmount) -> Decimal:
    """Validate ``amount`` as a finite, non-negative Decimal."""
    if isinstance(amount, bool):
        raise InvalidAmountError(amount, "booleans are not amounts")
    if isinstance(amount, float):
        # repr() gives the shortest string that round-trips, e.g. 0.1 -> "0.1"
        text = repr(amount)
    else:
        text = str(amount).strip()
    if not text:
        raise InvalidAmountError(amount, "empty amount")

    try:
        value = Decimal(text)
    except InvalidOperation as exc:
        raise InvalidAmountError(amount, "not a decimal number") from exc

    if not value.is_finite():
        raise InvalidAmountError(amount, "amount must be finite")
    if value.is_signed() and value != 0:
        raise InvalidAmountError(amount, "amount must not be negative")
    return abs(value)


def scale_to_units(amount: HumanAmount, decimals: int) -> int:
    """
    Convert a human amount to integer units for a token with ``decimals``.

    Fractional digits beyond ``decimals`` are truncated. The exponent is
    bounded before any string is built, so huge exponents fail fast.

    Raises:
        InvalidAmountError: On negative, non-finite, non-numeric or
            out-of-range (> uint256) input
    """
    if decimals < 0:
        raise ValueError(f"decimals must not be negative: {decimals}")
    value = _parse_amount(amount)
    if value == 0:
        return 0
    if value.adjusted() + decimals >= MAX_UINT256_DIGITS:
        raise InvalidAmountError(amount, "amount exceeds uint256")
    if value.adjusted() < -decimals:
        # Every significant digit is below one raw unit
        return 0

    text = format(value, "f")
    whole, _, fraction = text.partition(".")
    fraction = fraction.ljust(decimals, "0")[:decimals]

    units = int(whole or "0") * 10**decimals + int(fraction or "0")
    if units >= 2**256:
        raise InvalidAmountError(amount, "amount exceeds uint256")
    return units


def to_raw_units(amount: HumanAmount, currency: str) -> int:
    """
    Convert a human amount to integer on-chain units.

    Fractional digits beyond the currency's precision are truncated.

    Args:
        amount: Human amount, e.g. "5.00" or Decimal("0.021")
        currency: Currency symbol (ETH, BASE_ETH, USDC)

    Returns:
        Raw integer units (wei for ETH, 10^-6 for USDC)

    Raises:
        InvalidAmountError: On negative, non-finite, non-numeric or
            out-of-range input
        UnsupportedCurrencyError: On unknown currency
    """
    profile = get_currency_profile(currency)
    return scale_to_units(amount, profile.decimals)


def to_human_amount(raw_units: Union[int, str], currency: str) -> Decimal:
    """
    Convert integer on-chain units to an exact human Decimal.

    ``raw_units`` may be an int, a decimal digit string or a 0x-hex string.
    """
    profile = get_currency_profile(currency)
    raw = parse_raw_units(raw_units)

    whole, fraction = divmod(raw, 10**profile.decimals)
    if profile.decimals == 0:
        return Decimal(whole)
    fraction_text = str(fraction).rjust(profile.decimals, "0").rstrip("0")
    if not fraction_text:
        return Decimal(whole)
    return Decimal(f"{whole}.{fraction_text}")


def parse_raw_units(raw_units: Union[int, str]) -> int:
    if isinstance(raw_units, bool):
        raise InvalidAmountError(raw_units, "booleans are not amounts")
    if isinstance(raw_units, int):
        raw = raw_units
    else:
        text = str(raw_units).strip()
        try:
            raw = int(text, 16) if text.lower().startswith("0x") else int(text)
        except ValueError as exc:
            raise InvalidAmountError(raw_units, "raw units must be an integer") from exc
    if raw < 0:
        raise InvalidAmountError(raw_units, "raw units must not be negative")
    return raw


def format_human_amount(raw_units: Union[int, str], currency: str) -> str:
    return format(to_human_amount(raw_units, currency), "f")


def currency_to_token_address(currency: str, stable_token_contract: str) -> str:
    """
    Map a currency symbol to its on-chain token representation.

    Native coin maps to the zero-address sentinel the escrow contract expects.
    """
    profile = get_currency_profile(currency)
    if profile.is_native:
        return ZERO_ADDRESS
    return stable_token_contract.lower()


@dataclass(frozen=True, slots=True)
class MoneyAmount:
    """An amount carried in both human and raw form for one currency."""

    currency: str
    decimals: int
    raw_units: int
    human_amount: Decimal

    @classmethod
    def from_human(cls, amount: HumanAmount, currency: str) -> "MoneyAmount":
        profile = get_currency_profile(currency)
        raw = to_raw_units(amount, profile.symbol)
        return cls(
            currency=profile.symbol,
            decimals=profile.decimals,
            raw_units=raw,
            human_amount=to_human_amount(raw, profile.symbol),
        )

    @classmethod
    def from_raw(cls, raw_units: Union[int, str], currency: str) -> "MoneyAmount":
        profile = get_currency_profile(currency)
        raw = parse_raw_units(raw_units)
        return cls(
            currency=profile.symbol,
            decimals=profile.decimals,
            raw_units=raw,
            human_amount=to_human_amount(raw, profile.symbol),
        )

    @property
    def is_native(self) -> bool:
        return get_currency_profile(self.currency).is_native

    def __str__(self) -> str:
        return f"{format(self.human_amount, 'f')} {self.currency}"
