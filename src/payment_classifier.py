from typing import Optional

from custom_rules import (
    BOLETO, DINHEIRO, INFINITE, PAYMENT_METHOD_RULES, PGTO_OUTROS,
    PIX, PIX_SAFRA, SAFRA, SICOOB,
)
from ledger_models import Transaction


def classify_payment(txn: Transaction) -> str:
    """口座名（AccountName）と支払方法IDから入金チャネルを判定"""
    account = (txn.account_name or "").lower()
    method = txn.payment_method_id

    if "caixa" in account or method == 1:
        return DINHEIRO
    if "sicoob" in account:
        return SICOOB
    # Safra Pay（カード端末）と Banco Safra（口座）を区別
    if "safra pay" in account:
        return SAFRA
    if "safra" in account:
        return BOLETO if method == 4 else PIX_SAFRA
    # APIの口座名は "InfintePay" と綴られている
    if "infinte" in account or "infinite" in account:
        return INFINITE
    if "cora" in account:
        return PIX

    return PAYMENT_METHOD_RULES.get(method, PGTO_OUTROS)


def card_note(txn: Transaction) -> Optional[str]:
    if not txn.card_brand:
        return None
    if txn.installments:
        return f"{txn.card_brand} {txn.installments}x"
    return txn.card_brand
