import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Dict, Iterator, List, Optional

from appointment_validator import AppointmentValidator
from batch_context import BatchContext
from config_loader import load_rule_tables
from custom_rules import (
    ADVANCE_DEPOSIT_CATEGORY, EVALUATION_CATEGORY, GROUP_TO_CATEGORY, TREATMENT_CATEGORIES,
)
from feegow_client import FeegowAuthError, FeegowClient
from ledger_models import SOURCE_FAILED, EnrichedTransaction, Transaction, TransactionGroup
from payment_classifier import card_note, classify_payment
from procedure_classifier import ProcedureClassifier
from proposal_matcher import ProposalMatcher
from transaction_enricher import TransactionEnricher

log = logging.getLogger("feegow.reconciler")

PROGRESS_EVERY = 10


@dataclass
class DayResult:
    date: date
    transactions: List[EnrichedTransaction] = field(default_factory=list)
    groups: List[TransactionGroup] = field(default_factory=list)

    def source_counts(self) -> Dict[str, int]:
        counts: Dict[str, int] = defaultdict(int)
        for t in self.transactions:
            counts[t.source] += 1
        return dict(counts)

    @property
    def failed(self) -> List[EnrichedTransaction]:
        return [t for t in self.transactions if t.source == SOURCE_FAILED]

    @property
    def low_confidence(self) -> List[EnrichedTransaction]:
        return [t for t in self.transactions if t.low_confidence]

    def to_dict(self) -> Dict:
        return {
            "date": self.date.isoformat(),
            "sources": self.source_counts(),
            "groups": [dict(g.to_dict(), totals=summarize_group(g)) for g in self.groups],
        }


def date_range(start: date, end: date) -> Iterator[date]:
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


def group_transactions(transactions: List[EnrichedTransaction]) -> List[TransactionGroup]:
    """患者＋日付でまとめる（出現順を保持）"""
    groups: Dict[tuple, TransactionGroup] = {}
    for enriched in transactions:
        txn = enriched.transaction
        key = (txn.patient_id, txn.date)
        if key not in groups:
            groups[key] = TransactionGroup(txn.patient_id, txn.patient_name, txn.date)
        groups[key].transactions.append(enriched)
    return list(groups.values())


def summarize_group(group: TransactionGroup) -> Dict:
    """グループの集計。破棄・前受金の明細は手技合計に含めない"""
    category_totals: Dict[str, float] = defaultdict(float)
    discount_total = 0.0
    for item in group.items:
        if item.category is None or item.category == ADVANCE_DEPOSIT_CATEGORY:
            continue
        category_totals[item.category] += item.value
        if item.discount and item.discount > 0:
            # 割引は1単位あたりなので数量を掛ける
            discount_total += item.discount * (item.quantity or 1)

    payment_totals: Dict[str, float] = defaultdict(float)
    notes: List[str] = []
    for enriched in group.transactions:
        channel = enriched.payment_channel or classify_payment(enriched.transaction)
        payment_totals[channel] += enriched.transaction.value
        note = card_note(enriched.transaction)
        if note and note not in notes:
            notes.append(note)

    treatment_total = sum(category_totals.get(c, 0.0) for c in TREATMENT_CATEGORIES)
    return {
        "category_totals": dict(category_totals),
        "evaluation_total": category_totals.get(EVALUATION_CATEGORY, 0.0),
        "treatment_total": treatment_total,
        "discount_total": discount_total,
        "payment_totals": dict(payment_totals),
        "payment_only": group.payment_only,
        "card_notes": notes,
    }


class BatchReconciler:
    """日付範囲を1日ずつ突合する

    同じ日の取引は必ず1件ずつ順番に処理する（使用済み提案の台帳を共有するため）。
    """

    def __init__(self, client: FeegowClient, enricher: TransactionEnricher,
                 account_type_ids: Optional[List[int]] = None):
        self.client = client
        self.enricher = enricher
        self.account_type_ids = account_type_ids or [3]

    @classmethod
    def from_config(cls, client: FeegowClient, cfg: Dict) -> "BatchReconciler":
        thresholds = cfg.get("thresholds", {})
        overrides, name_patterns = load_rule_tables(cfg)
        category_map = client.fetch_category_map(GROUP_TO_CATEGORY, overrides)
        classifier = ProcedureClassifier(category_map, name_patterns)
        enricher = TransactionEnricher(
            client,
            classifier,
            matcher=ProposalMatcher(client, thresholds.get("min_invoice_overlap", 2)),
            validator=AppointmentValidator(client, thresholds.get("appointment_window_days", 7)),
            payment_only_days=thresholds.get("payment_only_days", 30),
        )
        return cls(client, enricher, cfg.get("report", {}).get("account_type_ids"))

    def run(self, start: date, end: date) -> List[DayResult]:
        """期間全体を処理する。途中で致命的エラーが出た場合は例外をそのまま送出する"""
        results = []
        ctx = BatchContext()
        for day in date_range(start, end):
            ctx.reset(day)
            results.append(self.reconcile_day(day, ctx))
        return results

    def reconcile_day(self, day: date, ctx: BatchContext = None) -> DayResult:
        if ctx is None:
            ctx = BatchContext(batch_date=day)

        transactions = self.client.fetch_transactions(day, day, self.account_type_ids)
        log.info(f"{day.isoformat()}: {len(transactions)}件の取引を明細化します")

        result = DayResult(day)
        for i, txn in enumerate(transactions, 1):
            result.transactions.append(self._enrich_one(txn, ctx))
            if i % PROGRESS_EVERY == 0:
                log.info(f"進捗: {i}/{len(transactions)}件")

        result.groups = group_transactions(result.transactions)
        log.info(f"{day.isoformat()}: {len(result.groups)}グループ, 内訳 {result.source_counts()}")
        return result

    def _enrich_one(self, txn: Transaction, ctx: BatchContext) -> EnrichedTransaction:
        try:
            return self.enricher.enrich(txn, ctx)
        except FeegowAuthError:
            raise
        except Exception as e:
            # 1取引の失敗で後続を止めない
            ctx.used_proposals.release()
            log.error(f"取引の明細化に失敗しました（患者 {txn.patient_id}, {txn.date}）: {e}")
            failed = EnrichedTransaction(txn, SOURCE_FAILED, error=str(e))
            failed.payment_channel = classify_payment(txn)
            failed.note(f"明細化エラー: {type(e).__name__}: {e}")
            return failed
