"""
stakeledger/protocol/logexp.py

18-decimal fixed-point natural exponential.

Integer-only evaluation of e^x for x scaled by 1e18. Large arguments are
reduced with a table of precomputed powers of e, the remainder goes through
a 12-term Taylor series in 20-decimal precision. Results match the on-chain
library unit for unit, which the lock multiplier depends on.
"""

from ..errors import InvalidExponent


# ============================================================================
# CONSTANTS
# ============================================================================

ONE_18 = 10 ** 18
ONE_20 = 10 ** 20

MAX_NATURAL_EXPONENT = 130 * ONE_18
MIN_NATURAL_EXPONENT = -41 * ONE_18

# x0 and x1 are 18-decimal, the a values carry no decimals
X0 = 128000000000000000000  # 2^7
A0 = 38877084059945950922200000000000000000000000000000000000  # e^(x0)
X1 = 64000000000000000000  # 2^6
A1 = 6235149080811616882910000000  # e^(x1)

# 20-decimal reduction table, (x, e^x)
REDUCTION_TABLE = (
    (3200000000000000000000, 7896296018268069516100000000000000),  # 2^5
    (1600000000000000000000, 888611052050787263676000000),  # 2^4
    (800000000000000000000, 298095798704172827474000),  # 2^3
    (400000000000000000000, 5459815003314423907810),  # 2^2
    (200000000000000000000, 738905609893065022723),  # 2^1
    (100000000000000000000, 271828182845904523536),  # 2^0
    (50000000000000000000, 164872127070012814685),  # 2^-1
    (25000000000000000000, 128402541668774148407),  # 2^-2
)

TAYLOR_TERMS = 12


# ============================================================================
# FUNCTIONS
# ============================================================================

def exp(x: int) -> int:
    """
    Compute e^x in 18-decimal fixed point.

    Args:
        x: Exponent scaled by 1e18, within [-41e18, 130e18]

    Returns:
        e^x scaled by 1e18

    Raises:
        InvalidExponent: If x is outside the supported range
    """
    if x < MIN_NATURAL_EXPONENT or x > MAX_NATURAL_EXPONENT:
        raise InvalidExponent(f"LogExpMath: Invalid exponent {x}")

    if x < 0:
        return (ONE_18 * ONE_18) // exp(-x)

    if x >= X0:
        x -= X0
        first_an = A0
    elif x >= X1:
        x -= X1
        first_an = A1
    else:
        first_an = 1

    # Switch to 20 decimals for the remaining reduction
    x *= 100

    product = ONE_20
    for x_n, a_n in REDUCTION_TABLE:
        if x >= x_n:
            x -= x_n
            product = (product * a_n) // ONE_20

    series_sum = ONE_20
    term = x
    series_sum += term
    for n in range(2, TAYLOR_TERMS + 1):
        term = (term * x) // ONE_20 // n
        series_sum += term

    return (((product * series_sum) // ONE_20) * first_an) // 100


def tanh(x: int) -> int:
    """Hyperbolic tangent of a non-negative 18-decimal value, 18-decimal result."""
    exp_x = exp(x)
    exp_minus_x = exp(-x)
    return ((exp_x - exp_minus_x) * ONE_18) // (exp_x + exp_minus_x)
