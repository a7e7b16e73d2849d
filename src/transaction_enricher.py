"""
取引の明細化と分類

1取引ごとに以下の順で処理する:
  1. 分割払い判定（invoice の提案日が30日超前なら payment-only）
  2. 提案（proposal）との突合
  3. レポートの手技名が1件ならそのまま1明細
  4. 複数手技なら invoice 明細、取れなければ均等割り
  5. 評価（AVALIACAO）は当日の来院予約を確認し、なければ前受金に振替
"""

import logging
from typing import List, Optional, Tuple

from appointment_validator import AppointmentValidator
from batch_context import BatchContext
from config_loader import PAYMENT_ONLY_DAYS
from custom_rules import ADVANCE_DEPOSIT_CATEGORY, EVALUATION_CATEGORY
from ledger_models import (
    PROVENANCE_APPOINTMENT_OVERRIDE,
    SOURCE_INVOICE,
    SOURCE_PAYMENT_ONLY,
    SOURCE_PROPOSAL,
    SOURCE_REPORT_DISTRIBUTED,
    SOURCE_REPORT_SINGLE,
    ClassifiedItem,
    EnrichedTransaction,
    Proposal,
    Transaction,
)
from payment_classifier import classify_payment
from procedure_classifier import ProcedureClassifier
from proposal_matcher import ProposalMatcher, split_procedure_names

log = logging.getLogger("feegow.enricher")


class TransactionEnricher:

    def __init__(self, client, classifier: ProcedureClassifier, matcher: ProposalMatcher = None,
                 validator: AppointmentValidator = None, payment_only_days: int = PAYMENT_ONLY_DAYS):
        self.client = client
        self.classifier = classifier
        self.matcher = matcher or ProposalMatcher(client)
        self.validator = validator or AppointmentValidator(client)
        self.payment_only_days = payment_only_days

    def enrich(self, txn: Transaction, ctx: BatchContext) -> EnrichedTransaction:
        enriched = self._payment_only(txn)
        if enriched is None:
            enriched, declined = self._from_proposal(txn, ctx)
            if enriched is None:
                enriched = self._from_report(txn)
                if declined:
                    enriched.audit.insert(0, f"提案なし: {declined}")
            self._classify(enriched)
            self._check_evaluations(enriched, ctx)

        enriched.payment_channel = classify_payment(txn)
        return enriched

    # ------------------------------------------------------------------
    # 1. 分割払い判定
    # ------------------------------------------------------------------

    def _payment_only(self, txn: Transaction) -> Optional[EnrichedTransaction]:
        if not txn.invoice_id:
            return None

        proposal_date = self.client.fetch_invoice_proposal_date(txn.invoice_id)
        if proposal_date is None or proposal_date == txn.date:
            return None

        days = abs((txn.date - proposal_date).days)
        if days <= self.payment_only_days:
            log.debug(f"invoice {txn.invoice_id}: 提案日 {proposal_date} から{days}日 → 通常処理")
            return None

        log.debug(f"invoice {txn.invoice_id}: 提案日 {proposal_date} から{days}日 → 支払のみ")
        enriched = EnrichedTransaction(txn, SOURCE_PAYMENT_ONLY, items=[], payment_only=True)
        enriched.note(f"invoice {txn.invoice_id} の提案日 {proposal_date.isoformat()} から{days}日経過のため支払のみ")
        return enriched

    # ------------------------------------------------------------------
    # 2. 提案との突合
    # ------------------------------------------------------------------

    def _from_proposal(self, txn: Transaction, ctx: BatchContext) -> Tuple[Optional[EnrichedTransaction], Optional[str]]:
        """提案から明細を作る。見つからなければ (None, 理由)"""
        if txn.patient_id is None:
            return None, None

        proposals = self.client.list_patient_proposals(txn.patient_id, txn.date, ctx)
        available = ctx.used_proposals.available(proposals)
        if not available:
            return None, None

        decision = self.matcher.decide(txn, available)
        proposal = decision.proposal
        if proposal is None:
            return None, decision.reason
        if not proposal.items:
            return None, f"提案 #{proposal.proposal_id} に明細なし"

        ledger = ctx.used_proposals
        ledger.reserve(proposal.proposal_id)
        try:
            items = self._items_from_proposal(proposal)
        except Exception:
            ledger.release()
            raise
        ledger.commit()

        log.debug(f"invoice {txn.invoice_id or '?'}: 提案 #{proposal.proposal_id} を使用（{len(items)}明細, 合計 {proposal.value}）")
        enriched = EnrichedTransaction(txn, SOURCE_PROPOSAL, items=items, proposal_id=proposal.proposal_id)
        enriched.note(f"提案 #{proposal.proposal_id}: {decision.reason}")
        return enriched, None

    @staticmethod
    def _items_from_proposal(proposal: Proposal) -> List[ClassifiedItem]:
        # 提案の金額は単価（レアル）なので数量を掛ける
        return [
            ClassifiedItem(
                name=item.name,
                procedure_id=item.procedure_id,
                value=item.unit_value * item.quantity,
                quantity=item.quantity,
                discount=item.discount,
                surcharge=item.surcharge,
            )
            for item in proposal.items
        ]

    # ------------------------------------------------------------------
    # 3-4. レポート / invoice
    # ------------------------------------------------------------------

    def _from_report(self, txn: Transaction) -> EnrichedTransaction:
        names = split_procedure_names(txn.procedure_name)
        if len(names) <= 1:
            enriched = EnrichedTransaction(txn, SOURCE_REPORT_SINGLE, items=[ClassifiedItem(
                name=txn.procedure_name or "Procedimento",
                procedure_id=txn.procedure_id,
                value=txn.value,
                quantity=txn.quantity,
            )])
        elif not txn.invoice_id:
            enriched = self._distributed(txn, names)
            enriched.note(f"invoice番号なし: {len(names)}手技に均等割り")
        else:
            enriched = self._from_invoice(txn, names)

        return enriched

    def _from_invoice(self, txn: Transaction, names: List[str]) -> EnrichedTransaction:
        invoice_items = self.client.fetch_invoice_items(txn.invoice_id, txn.date)
        if not invoice_items:
            log.warning(f"invoice {txn.invoice_id} に明細がないため金額を均等割りします")
            enriched = self._distributed(txn, names)
            enriched.note(f"invoice {txn.invoice_id} の明細なし: {len(names)}手技に均等割り")
            return enriched

        enriched = EnrichedTransaction(txn, SOURCE_INVOICE)
        if len(invoice_items) != len(names):
            log.debug(f"invoice {txn.invoice_id}: 明細{len(invoice_items)}件 / レポートの手技名{len(names)}件")
            enriched.note(f"invoice明細{len(invoice_items)}件とレポートの手技名{len(names)}件が不一致")

        for item in invoice_items:
            name = None
            if item.procedure_id is not None:
                name = self.client.fetch_procedure_name(item.procedure_id)
            enriched.items.append(ClassifiedItem(
                name=name or f"Procedimento #{item.procedure_id}",
                procedure_id=item.procedure_id,
                value=item.value,
                quantity=item.quantity,
                discount=item.discount,
            ))
        return enriched

    @staticmethod
    def _distributed(txn: Transaction, names: List[str]) -> EnrichedTransaction:
        per_item = txn.value / len(names)
        items = [ClassifiedItem(name=n, procedure_id=None, value=per_item) for n in names]
        return EnrichedTransaction(txn, SOURCE_REPORT_DISTRIBUTED, items=items, low_confidence=True)

    # ------------------------------------------------------------------
    # 分類と評価チェック
    # ------------------------------------------------------------------

    def _classify(self, enriched: EnrichedTransaction):
        for item in enriched.items:
            result = self.classifier.classify(item.name, item.procedure_id)
            item.category = result.category
            item.provenance = result.provenance

    def _check_evaluations(self, enriched: EnrichedTransaction, ctx: BatchContext):
        evaluations = [i for i in enriched.items if i.category == EVALUATION_CATEGORY]
        if not evaluations:
            return

        txn = enriched.transaction
        if txn.patient_id is None:
            enriched.note("患者IDがないため評価の予約確認をスキップ")
            return

        check = self.validator.check(txn.patient_id, txn.date, ctx)
        if check.api_error:
            # インフラ障害で患者を不利にしない
            log.warning(f"評価 {txn.patient_name}: 予約APIが失敗したため評価のまま")
            enriched.note("予約APIエラー: 評価のまま計上")
            return
        if check.is_online_consultation:
            enriched.note("前後の予約にオンライン診察あり")
        if check.has_appointment_on_date:
            return

        for item in evaluations:
            log.debug(f"評価 {txn.patient_name}: 当日の予約なし → 前受金")
            item.category = ADVANCE_DEPOSIT_CATEGORY
            item.provenance = PROVENANCE_APPOINTMENT_OVERRIDE
            item.reversed_discount = item.discount
            item.discount = 0.0
            enriched.note(f"{item.name}: {txn.date.isoformat()} に予約なし、前受金に振替")
