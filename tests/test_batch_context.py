import os
import sys
from datetime import date

import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..', 'src')))

from batch_context import BatchContext, ProposalLedger, ProposalReservationError
from ledger_models import Proposal


def _p(pid):
    return Proposal(pid, "Executada", 100.0, [])


def test_reserve_commit_removes_from_pool():
    ledger = ProposalLedger()
    pool = [_p(1), _p(2)]
    ledger.reserve(1)
    # 予約中の提案は他の取引から見えない
    assert [p.proposal_id for p in ledger.available(pool)] == [2]
    assert ledger.commit() == 1
    assert ledger.is_used(1)
    assert [p.proposal_id for p in ledger.available(pool)] == [2]


def test_release_returns_proposal_to_pool():
    ledger = ProposalLedger()
    ledger.reserve(1)
    ledger.release()
    assert ledger.pending is None
    assert [p.proposal_id for p in ledger.available([_p(1)])] == [1]


def test_only_one_pending_reservation():
    ledger = ProposalLedger()
    ledger.reserve(1)
    with pytest.raises(ProposalReservationError):
        ledger.reserve(2)


def test_cannot_reserve_used_proposal():
    ledger = ProposalLedger()
    ledger.reserve(1)
    ledger.commit()
    with pytest.raises(ProposalReservationError):
        ledger.reserve(1)


def test_commit_without_reservation():
    with pytest.raises(ProposalReservationError):
        ProposalLedger().commit()


def test_reset_clears_batch_state():
    ctx = BatchContext()
    ctx.used_proposals.reserve(5)
    ctx.used_proposals.commit()
    ctx.appointment_cache[1] = object()
    ctx.proposal_cache[(1, date(2026, 2, 5))] = []

    ctx.reset(date(2026, 2, 6))
    assert ctx.batch_date == date(2026, 2, 6)
    assert len(ctx.used_proposals) == 0
    assert ctx.appointment_cache == {}
    assert ctx.proposal_cache == {}
