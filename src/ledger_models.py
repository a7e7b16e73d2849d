from dataclasses import dataclass, field, asdict
from datetime import date, datetime
from typing import Dict, List, Optional, Union


# 取引ソース（enrich結果の終端状態）
SOURCE_PROPOSAL = "proposal"
SOURCE_INVOICE = "invoice"
SOURCE_REPORT_SINGLE = "report-single"
SOURCE_REPORT_DISTRIBUTED = "report-distributed"
SOURCE_PAYMENT_ONLY = "payment-only"
SOURCE_FAILED = "failed"

# 分類の根拠
PROVENANCE_ID = "id"
PROVENANCE_NAME = "name"
PROVENANCE_FALLBACK = "fallback"
PROVENANCE_APPOINTMENT_OVERRIDE = "appointment-override"


def parse_api_date(value: Union[str, date, datetime, None]) -> Optional[date]:
    """APIの日付文字列を date に変換する。

    レポートは DD/MM/YYYY、invoice・proposal・予約は DD-MM-YYYY、
    CLI引数は YYYY-MM-DD で来るため、境界でここに集約する。
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()[:10]
    for fmt in ("%d/%m/%Y", "%d-%m-%Y", "%Y-%m-%d"):
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    raise ValueError(f"日付形式を解釈できません: {value!r}")


def _to_float(value, default: float = 0.0) -> float:
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        # "12,50" のような小数カンマ表記
        return float(str(value).replace(".", "").replace(",", "."))


def _to_int(value) -> Optional[int]:
    if value is None or value == "":
        return None
    return int(value)


@dataclass
class Transaction:
    """財務レポート（financial-movement）の1行"""
    patient_id: Optional[int]
    patient_name: str
    date: date
    value: float
    procedure_name: str = ""
    procedure_id: Optional[int] = None
    invoice_id: Optional[int] = None
    payment_method_id: Optional[int] = None
    payment_method_name: str = ""
    account_name: str = ""
    card_brand: str = ""
    installments: Optional[int] = None
    quantity: int = 1

    @classmethod
    def from_api(cls, row: Dict) -> "Transaction":
        txn_date = parse_api_date(row.get("Data"))
        if txn_date is None:
            raise ValueError("取引日（Data）がありません")
        return cls(
            patient_id=_to_int(row.get("PacienteID")),
            patient_name=row.get("NomePaciente") or "",
            date=txn_date,
            value=_to_float(row.get("Value")),
            procedure_name=row.get("NomeProcedimento") or "",
            procedure_id=_to_int(row.get("ProcedimentoID")),
            invoice_id=_to_int(row.get("NumeroInvoice")),
            payment_method_id=_to_int(row.get("FormaPagamentoID")),
            payment_method_name=row.get("FormaPagamento") or "",
            account_name=row.get("AccountName") or "",
            card_brand=row.get("Bandeira") or "",
            installments=_to_int(row.get("Parcelas")),
            quantity=_to_int(row.get("Quantidade")) or 1,
        )

    def to_dict(self) -> Dict:
        d = asdict(self)
        d["date"] = self.date.isoformat() if self.date else None
        return d


@dataclass
class ProposalItem:
    procedure_id: Optional[int]
    name: str
    unit_value: float
    quantity: int = 1
    discount: float = 0.0
    surcharge: float = 0.0

    @classmethod
    def from_api(cls, raw: Dict) -> "ProposalItem":
        return cls(
            procedure_id=_to_int(raw.get("procedimento_id")),
            name=raw.get("nome") or "",
            unit_value=_to_float(raw.get("valor")),
            quantity=_to_int(raw.get("quantidade")) or 1,
            discount=_to_float(raw.get("desconto")),
            surcharge=_to_float(raw.get("acrescimo")),
        )


@dataclass
class Proposal:
    proposal_id: int
    status: str
    value: float
    items: List[ProposalItem] = field(default_factory=list)

    @classmethod
    def from_api(cls, raw: Dict) -> "Proposal":
        procs = (raw.get("procedimentos") or {}).get("data") or []
        return cls(
            proposal_id=_to_int(raw.get("proposal_id")),
            status=raw.get("status") or "",
            value=_to_float(raw.get("value")),
            items=[ProposalItem.from_api(p) for p in procs],
        )

    def procedure_ids(self) -> List[int]:
        return [item.procedure_id for item in self.items]


@dataclass
class InvoiceItem:
    """invoice明細。金額はセント単位（minor units）のまま保持する"""
    procedure_id: Optional[int]
    value_cents: int
    quantity: int = 1
    discount_cents: int = 0

    @classmethod
    def from_api(cls, raw: Dict) -> "InvoiceItem":
        return cls(
            procedure_id=_to_int(raw.get("procedimento_id")),
            value_cents=int(_to_float(raw.get("valor"))),
            quantity=_to_int(raw.get("quantidade")) or 1,
            discount_cents=int(_to_float(raw.get("desconto"))),
        )

    @property
    def value(self) -> float:
        return self.value_cents / 100

    @property
    def discount(self) -> float:
        return self.discount_cents / 100


@dataclass
class Invoice:
    invoice_id: Optional[int]
    items: List[InvoiceItem] = field(default_factory=list)
    proposal_date: Optional[date] = None

    @classmethod
    def from_api(cls, raw: Dict) -> "Invoice":
        details = raw.get("detalhes") or []
        proposal_date = parse_api_date(details[0].get("data")) if details else None
        return cls(
            invoice_id=_to_int(raw.get("invoice_id") or raw.get("id")),
            items=[InvoiceItem.from_api(i) for i in raw.get("itens") or []],
            proposal_date=proposal_date,
        )


@dataclass
class Appointment:
    date: Optional[date]
    telehealth: bool = False
    notes: str = ""

    @classmethod
    def from_api(cls, raw: Dict) -> "Appointment":
        return cls(
            date=parse_api_date(raw.get("data")),
            telehealth=raw.get("telemedicina") is True,
            notes=raw.get("notas") or "",
        )


@dataclass
class ClassifiedItem:
    name: str
    procedure_id: Optional[int]
    value: float
    quantity: int = 1
    discount: float = 0.0
    surcharge: float = 0.0
    category: Optional[str] = None
    provenance: str = PROVENANCE_FALLBACK
    # 予約なし評価で取り消した割引額（監査用）
    reversed_discount: float = 0.0

    @property
    def discarded(self) -> bool:
        return self.category is None

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass
class EnrichedTransaction:
    transaction: Transaction
    source: str
    items: List[ClassifiedItem] = field(default_factory=list)
    payment_only: bool = False
    low_confidence: bool = False
    proposal_id: Optional[int] = None
    payment_channel: Optional[str] = None
    audit: List[str] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def patient_id(self) -> Optional[int]:
        return self.transaction.patient_id

    @property
    def date(self) -> date:
        return self.transaction.date

    def note(self, message: str):
        self.audit.append(message)

    def to_dict(self) -> Dict:
        return {
            "transaction": self.transaction.to_dict(),
            "source": self.source,
            "payment_only": self.payment_only,
            "low_confidence": self.low_confidence,
            "proposal_id": self.proposal_id,
            "payment_channel": self.payment_channel,
            "items": [i.to_dict() for i in self.items],
            "audit": list(self.audit),
            "error": self.error,
        }


@dataclass
class TransactionGroup:
    """患者＋日付単位の集約（スプレッドシート1行に相当）"""
    patient_id: Optional[int]
    patient_name: str
    date: date
    transactions: List[EnrichedTransaction] = field(default_factory=list)

    @property
    def items(self) -> List[ClassifiedItem]:
        return [item for t in self.transactions for item in t.items]

    @property
    def payment_only(self) -> bool:
        return any(t.payment_only for t in self.transactions)

    def to_dict(self) -> Dict:
        return {
            "patient_id": self.patient_id,
            "patient_name": self.patient_name,
            "date": self.date.isoformat() if self.date else None,
            "payment_only": self.payment_only,
            "transactions": [t.to_dict() for t in self.transactions],
        }
