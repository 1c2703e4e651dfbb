from typing import Tuple

from solders.pubkey import Pubkey

from openbook.markets import get_layout_version

BASE_FEE_RATES = (0.0022, -0.0003)

# tier -> (taker, maker)
FEE_RATES = {
    1: (0.002, -0.0003),  # SRM2
    2: (0.0018, -0.0003),  # SRM3
    3: (0.0016, -0.0003),  # SRM4
    4: (0.0014, -0.0003),  # SRM5
    5: (0.0012, -0.0003),  # SRM6
    6: (0.001, -0.0005),  # MSRM
}

# (minimum SRM balance, tier), highest first
SRM_TIERS = [
    (1_000_000, 5),
    (100_000, 4),
    (10_000, 3),
    (1_000, 2),
    (100, 1),
]


def supports_srm_fee_discounts(program_id: Pubkey) -> bool:
    return get_layout_version(program_id) > 0


def get_fee_rates(fee_tier: int) -> Tuple[float, float]:
    return FEE_RATES.get(fee_tier, BASE_FEE_RATES)


def get_fee_tier(msrm_balance: float, srm_balance: float) -> int:
    if msrm_balance >= 1:
        return 6
    for threshold, tier in SRM_TIERS:
        if srm_balance >= threshold:
            return tier
    return 0
