"""Pool split arithmetic and derived dare state."""
from datetime import timedelta

from database.models import Dare, Bet, BetType
from dares.settlement import (
    DareState,
    dare_state,
    winning_side,
    creator_fee,
    completer_reward,
    winners_share,
    bet_winnings,
    cash_out_refund,
    cash_out_closes_at,
    can_cash_out,
    split_summary,
)

from conftest import NOW, CREATOR, ALICE, BOB, sol


def make_dare(total=10, will=6, wont=4, completed=False, deadline=NOW + timedelta(days=1)):
    return Dare(id="dare_x", creator=CREATOR, title="Swim in the lake", deadline=deadline,
                total_pool=sol(total), will_do_pool=sol(will), wont_do_pool=sol(wont),
                is_completed=completed)


def make_bet(amount, bet_type=BetType.WILL_DO, bettor=ALICE, **flags):
    return Bet(id="bet_x", dare_id="dare_x", bettor=bettor, amount=sol(amount),
               bet_type=bet_type, tx_signature="tx", **flags)


class TestDareState:
    def test_open_before_deadline(self):
        assert dare_state(make_dare(), NOW) == DareState.OPEN

    def test_expired_at_deadline(self):
        dare = make_dare(deadline=NOW)
        assert dare_state(dare, NOW) == DareState.EXPIRED_UNRESOLVED

    def test_completed_wins_over_deadline(self):
        dare = make_dare(completed=True, deadline=NOW - timedelta(hours=1))
        assert dare_state(dare, NOW) == DareState.COMPLETED

    def test_winning_side(self):
        assert winning_side(DareState.COMPLETED) == BetType.WILL_DO
        assert winning_side(DareState.EXPIRED_UNRESOLVED) == BetType.WONT_DO
        assert winning_side(DareState.OPEN) is None


class TestSplits:
    def test_completed_dare_payouts(self):
        dare = make_dare(completed=True)
        assert creator_fee(dare) == sol(0.2)
        assert completer_reward(dare) == sol(5)
        assert winners_share(dare) == sol(4.8)
        assert bet_winnings(dare, make_bet(3), BetType.WILL_DO) == sol(2.4)

    def test_losing_bet_gets_nothing(self):
        dare = make_dare(completed=True)
        assert bet_winnings(dare, make_bet(4, BetType.WONT_DO, BOB), BetType.WILL_DO) == 0

    def test_settled_bet_gets_nothing(self):
        dare = make_dare(completed=True)
        assert bet_winnings(dare, make_bet(3, is_claimed=True), BetType.WILL_DO) == 0
        assert bet_winnings(dare, make_bet(3, is_early_cash_out=True), BetType.WILL_DO) == 0

    def test_empty_winning_side(self):
        dare = make_dare(total=4, will=0, wont=4)
        assert bet_winnings(dare, make_bet(1), BetType.WILL_DO) == 0

    def test_expired_dare_pays_wont_do(self):
        dare = make_dare(deadline=NOW - timedelta(minutes=1))
        bet = make_bet(4, BetType.WONT_DO, BOB)
        assert bet_winnings(dare, bet, winning_side(dare_state(dare, NOW))) == sol(4.8)

    def test_splits_round_down(self):
        dare = Dare(id="d", creator=CREATOR, title="t", deadline=NOW,
                    total_pool=7, will_do_pool=3, wont_do_pool=4, is_completed=True)
        assert creator_fee(dare) == 0
        assert completer_reward(dare) == 3
        bet = Bet(id="b", dare_id="d", bettor=ALICE, amount=1, bet_type=BetType.WILL_DO, tx_signature="t")
        # 7 * 4800 * 1 // (10000 * 3)
        assert bet_winnings(dare, bet, BetType.WILL_DO) == 1

    def test_winners_never_exceed_share(self):
        dare = Dare(id="d", creator=CREATOR, title="t", deadline=NOW,
                    total_pool=1001, will_do_pool=1001, wont_do_pool=0, is_completed=True)
        bets = [Bet(id=str(i), dare_id="d", bettor=ALICE, amount=amount,
                    bet_type=BetType.WILL_DO, tx_signature=str(i))
                for i, amount in enumerate((333, 333, 335))]
        total = sum(bet_winnings(dare, b, BetType.WILL_DO) for b in bets)
        assert total <= winners_share(dare)
        assert creator_fee(dare) + completer_reward(dare) + total <= dare.total_pool


class TestCashOut:
    def test_refund_is_ninety_percent(self):
        assert cash_out_refund(make_bet(1)) == sol(0.9)

    def test_window_closes_ten_minutes_before_deadline(self):
        dare = make_dare(deadline=NOW + timedelta(minutes=30))
        bet = make_bet(1)
        assert cash_out_closes_at(dare) == NOW + timedelta(minutes=20)
        assert can_cash_out(dare, bet, NOW)
        assert can_cash_out(dare, bet, NOW + timedelta(minutes=19, seconds=59))
        assert not can_cash_out(dare, bet, NOW + timedelta(minutes=20))

    def test_no_cash_out_once_completed(self):
        assert not can_cash_out(make_dare(completed=True), make_bet(1), NOW)

    def test_no_cash_out_for_settled_bet(self):
        assert not can_cash_out(make_dare(), make_bet(1, is_early_cash_out=True), NOW)


def test_split_summary_for_open_dare():
    summary = split_summary(make_dare(), NOW)
    assert summary["state"] == "open"
    assert summary["winning_side"] is None
    assert summary["completer_reward"] == 0
    assert summary["creator_fee"] == sol(0.2)
