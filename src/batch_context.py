"""
バッチ単位の状態管理
1日分の突合処理の開始時に生成し、すべての呼び出しに引き回す
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Dict, List, Optional, Set, Tuple

from ledger_models import Proposal


class ProposalReservationError(RuntimeError):
    pass


class ProposalLedger:
    """使用済み提案の台帳（UsedProposals）

    読み取り（available）→ 予約（reserve）→ 確定（commit）/ 解放（release）の順で使う。
    予約中の提案は常に1件まで。前の取引が確定または解放するまで次の予約はできない。
    """

    def __init__(self):
        self._used: Set[int] = set()
        self._pending: Optional[int] = None

    def available(self, proposals: List[Proposal]) -> List[Proposal]:
        return [p for p in proposals if p.proposal_id not in self._used and p.proposal_id != self._pending]

    def reserve(self, proposal_id: int):
        if self._pending is not None:
            raise ProposalReservationError(
                f"提案 #{self._pending} の予約が未確定のまま #{proposal_id} を予約しようとしました"
            )
        if proposal_id in self._used:
            raise ProposalReservationError(f"提案 #{proposal_id} は既に使用済みです")
        self._pending = proposal_id

    def commit(self) -> int:
        if self._pending is None:
            raise ProposalReservationError("確定する予約がありません")
        proposal_id = self._pending
        self._used.add(proposal_id)
        self._pending = None
        return proposal_id

    def release(self):
        self._pending = None

    @property
    def pending(self) -> Optional[int]:
        return self._pending

    def is_used(self, proposal_id: int) -> bool:
        return proposal_id in self._used

    @property
    def used_ids(self) -> Set[int]:
        return set(self._used)

    def __len__(self):
        return len(self._used)


@dataclass
class BatchContext:
    batch_date: Optional[date] = None
    used_proposals: ProposalLedger = field(default_factory=ProposalLedger)
    # patient_id → 予約検索結果（LookupResult）
    appointment_cache: Dict[int, object] = field(default_factory=dict)
    # (patient_id, date) → 実行済み提案リスト
    proposal_cache: Dict[Tuple[int, date], List[Proposal]] = field(default_factory=dict)

    def reset(self, batch_date: Optional[date] = None):
        """新しいバッチの開始。使用済み提案と予約キャッシュを消去する"""
        self.batch_date = batch_date
        self.used_proposals = ProposalLedger()
        self.appointment_cache.clear()
        self.proposal_cache.clear()
