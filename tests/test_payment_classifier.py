import os
import sys
from datetime import date

import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..', 'src')))

from custom_rules import BOLETO, CHEQUE, DINHEIRO, INFINITE, PGTO_OUTROS, PIX, PIX_SAFRA, SAFRA, SICOOB
from ledger_models import Transaction
from payment_classifier import card_note, classify_payment


def _txn(account_name="", method=None, **kwargs):
    return Transaction(1, "ANA", date(2026, 2, 5), 100.0, account_name=account_name,
                       payment_method_id=method, **kwargs)


@pytest.mark.parametrize("account, method, expected", [
    ("Caixa Clínica", 3, DINHEIRO),
    ("", 1, DINHEIRO),
    ("Sicoob Conta", 3, SICOOB),
    ("Safra Pay", 8, SAFRA),
    ("Banco Safra", 4, BOLETO),
    ("Banco Safra", 3, PIX_SAFRA),
    ("InfintePay", 9, INFINITE),
    ("Banco Cora", 6, PIX),
    ("", 2, CHEQUE),
    ("", 8, INFINITE),
    ("Conta Desconhecida", 99, PGTO_OUTROS),
    ("", None, PGTO_OUTROS),
])
def test_classify_payment(account, method, expected):
    assert classify_payment(_txn(account, method)) == expected


def test_card_note():
    assert card_note(_txn(card_brand="Visa", installments=3)) == "Visa 3x"
    assert card_note(_txn(card_brand="Master")) == "Master"
    assert card_note(_txn()) is None
