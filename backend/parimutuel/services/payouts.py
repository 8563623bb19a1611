from dataclasses import dataclass

from parimutuel.models.enums import Side

BPS_DENOMINATOR = 10_000


@dataclass(frozen=True, slots=True)
class PayoutBreakdown:
    gross: int
    fee: int
    net: int


ZERO_PAYOUT = PayoutBreakdown(gross=0, fee=0, net=0)


def determine_winner(strike_price: int, final_price: int) -> Side:
    """UP only on a strict rise; an unchanged price settles DOWN."""
    return Side.UP if final_price > strike_price else Side.DOWN


def compute_payout(
    *,
    amount: int,
    side: str,
    winner: str | None,
    total_up: int,
    total_down: int,
    fee_bps: int,
) -> PayoutBreakdown:
    """Parimutuel share of the pot for one bet, floored at every step."""
    if winner is None or side != winner:
        return ZERO_PAYOUT
    winner_total = total_up if winner == Side.UP else total_down
    if winner_total <= 0 or amount <= 0:
        return ZERO_PAYOUT
    gross = amount * (total_up + total_down) // winner_total
    fee = gross * fee_bps // BPS_DENOMINATOR
    return PayoutBreakdown(gross=gross, fee=fee, net=gross - fee)


def estimate_payout(
    *,
    amount: int,
    side: str,
    total_up: int,
    total_down: int,
    fee_bps: int,
) -> PayoutBreakdown:
    """Payout if *side* wins with the current totals plus this stake."""
    up = total_up + (amount if side == Side.UP else 0)
    down = total_down + (amount if side == Side.DOWN else 0)
    return compute_payout(amount=amount, side=side, winner=side, total_up=up, total_down=down, fee_bps=fee_bps)
