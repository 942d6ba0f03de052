# Overview: Integer-cent arithmetic helpers shared by pricing, refunds and drawers.

from __future__ import annotations

BPS_DENOMINATOR = 10_000


def round_div(numerator: int, denominator: int) -> int:
    """Integer division rounding half away from zero."""
    if denominator <= 0:
        raise ValueError("denominator must be positive")
    if numerator < 0:
        return -((-numerator + denominator // 2) // denominator)
    return (numerator + denominator // 2) // denominator


def apply_bps(amount_cents: int, rate_bps: int) -> int:
    """amount x rate, where rate is in basis points (1000 = 10%)."""
    return round_div(amount_cents * rate_bps, BPS_DENOMINATOR)


def prorate(total_cents: int, part: int, whole: int) -> int:
    """Share of ``total_cents`` for ``part`` units out of ``whole``."""
    if part == whole:
        return total_cents
    return round_div(total_cents * part, whole)


def format_cents(amount_cents: int | None) -> str:
    if amount_cents is None:
        return "-"
    sign = "-" if amount_cents < 0 else ""
    value = abs(amount_cents)
    return f"{sign}{value // 100}.{value % 100:02d}"
