import logging
import re
from dataclasses import dataclass
from typing import List, Optional

from ledger_models import Proposal, Transaction

log = logging.getLogger("feegow.matcher")

# カンマの直後が文字（"Implante,Soroterapia"）または序数（"Im,3º Consulta"）のときだけ区切る。
# 小数カンマ（"Estradiol 12,5Mg", "Tirzepatida 40Mg/1,6Ml"）は区切らない
_NAME_SEPARATOR = re.compile(r",(?=\s*[A-Za-zÀ-ú])|,(?=\s*\d+º)")


def split_procedure_names(text: Optional[str]) -> List[str]:
    if not text:
        return []
    return [n.strip() for n in _NAME_SEPARATOR.split(text) if n.strip()]


def is_multi_procedure(txn: Transaction) -> bool:
    return len(split_procedure_names(txn.procedure_name)) > 1


@dataclass
class MatchDecision:
    proposal: Optional[Proposal]
    reason: str


class ProposalMatcher:
    """取引に対応する提案を探す。確信が持てない場合は推測せず None を返す"""

    def __init__(self, client, min_invoice_overlap: int = 2):
        self.client = client
        self.min_invoice_overlap = min_invoice_overlap

    def match(self, txn: Transaction, available: List[Proposal]) -> Optional[Proposal]:
        return self.decide(txn, available).proposal

    def decide(self, txn: Transaction, available: List[Proposal]) -> MatchDecision:
        if not available:
            return MatchDecision(None, "利用可能な提案なし")

        if not is_multi_procedure(txn):
            return self._match_single(txn, available)
        return self._match_multi(txn, available)

    def _match_single(self, txn: Transaction, available: List[Proposal]) -> MatchDecision:
        if txn.procedure_id is None:
            return MatchDecision(None, "手技IDなし")

        candidates = [p for p in available if txn.procedure_id in p.procedure_ids()]
        if not candidates:
            return MatchDecision(None, f"手技ID {txn.procedure_id} を含む提案なし")
        if len(candidates) == 1:
            return MatchDecision(candidates[0], f"手技ID {txn.procedure_id} で一意に一致")

        # 複数候補: 合計額が取引額に最も近いもの（同差なら先勝ち）
        best = min(candidates, key=lambda p: abs(p.value - txn.value))
        delta = abs(best.value - txn.value)
        log.debug(f"手技ID {txn.procedure_id}: 候補{len(candidates)}件から差額 {delta:.2f} の提案 #{best.proposal_id} を選択")
        return MatchDecision(best, f"手技ID {txn.procedure_id} の候補{len(candidates)}件中、差額 {delta:.2f} が最小")

    def _match_multi(self, txn: Transaction, available: List[Proposal]) -> MatchDecision:
        if not txn.invoice_id:
            return MatchDecision(None, "複数手技だがinvoice番号なし")

        items = self.client.fetch_invoice_items(txn.invoice_id, txn.date)
        if not items:
            return MatchDecision(None, f"invoice {txn.invoice_id} の明細なし")

        invoice_ids = {item.procedure_id for item in items}
        best, best_count = None, 0
        for proposal in available:
            count = len([pid for pid in proposal.procedure_ids() if pid in invoice_ids])
            if count > best_count:
                best, best_count = proposal, count

        if best is None or best_count < self.min_invoice_overlap:
            return MatchDecision(None, f"invoice明細との一致が{best_count}件（{self.min_invoice_overlap}件未満）")
        return MatchDecision(best, f"invoice {txn.invoice_id} の明細と{best_count}件一致")
