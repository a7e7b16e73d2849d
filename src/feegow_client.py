import logging
import time
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any, Callable, Dict, List, Optional

import requests

from batch_context import BatchContext
from ledger_models import Appointment, Invoice, InvoiceItem, Proposal, Transaction
from procedure_classifier import build_category_map

log = logging.getLogger("feegow.client")

DEFAULT_BASE_URL = "https://api.feegow.com/v1"

# 提案ステータス「実行済み」のみ突合対象
EXECUTED_STATUS = "Executada"

# C = 売掛（患者）
RECEIVABLE = "C"

# 提案日を調べるときの invoice 検索範囲（古い提案の分割払いも拾う）
PROPOSAL_DATE_RANGE = ("01-01-2020", "31-12-2030")


class FeegowAPIError(Exception):
    pass


class FeegowAuthError(FeegowAPIError):
    """認証・認可エラー。以降の呼び出しも成功しないため処理を中断する"""


class FeegowReportError(FeegowAPIError):
    """取引レポート自体の取得失敗。突合対象がないためバッチを中断する"""


@dataclass
class LookupResult:
    data: Any
    api_error: bool = False


def _fmt_dash(d: date) -> str:
    return d.strftime("%d-%m-%Y")


def _fmt_slash(d: date) -> str:
    return d.strftime("%d/%m/%Y")


class FeegowClient:
    """Feegow API クライアント（キャッシュ・リトライ付き）"""

    def __init__(self, api_token: str, base_url: str = None, max_attempts: int = 3,
                 backoff_seconds: float = 0.5, timeout: float = 30,
                 sleep: Callable[[float], None] = time.sleep):
        self.api_token = api_token
        self.base_url = (base_url or DEFAULT_BASE_URL).rstrip("/")
        self.headers = {
            "Content-Type": "application/json",
            "x-access-token": api_token,
        }
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self.timeout = timeout
        self._sleep = sleep

        # プロセス内で有効なキャッシュ
        self._procedure_cache: Dict[int, Optional[Dict]] = {}
        self._category_map: Optional[Dict[int, Optional[str]]] = None

    @classmethod
    def from_config(cls, api_token: str, base_url: str, cfg: Dict) -> "FeegowClient":
        retry = cfg.get("retry", {})
        return cls(
            api_token,
            base_url=base_url,
            max_attempts=retry.get("max_attempts", 3),
            backoff_seconds=retry.get("backoff_seconds", 0.5),
            timeout=retry.get("timeout_seconds", 30),
        )

    # ------------------------------------------------------------------
    # 低レベル呼び出し
    # ------------------------------------------------------------------

    def _get(self, path: str, params: Dict) -> LookupResult:
        """冪等なGETをリトライ付きで実行する

        ネットワークエラー・409・5xx は最大 max_attempts 回まで
        attempt × backoff_seconds 秒待って再試行する。
        それ以外の失敗とリトライ上限到達は api_error=True で返す（例外にしない）。
        401/403 のみ FeegowAuthError を送出する。
        """
        url = f"{self.base_url}{path}"
        for attempt in range(1, self.max_attempts + 1):
            status = None
            try:
                response = requests.get(url, headers=self.headers, params=params, timeout=self.timeout)
                status = response.status_code
            except (requests.ConnectionError, requests.Timeout,
                    requests.exceptions.ChunkedEncodingError) as e:
                reason = f"network: {e}"
            except requests.RequestException as e:
                log.warning(f"{path}: リクエストエラー {type(e).__name__}（再試行しません）")
                return LookupResult(None, api_error=True)
            else:
                if status in (401, 403):
                    raise FeegowAuthError(f"APIトークンが無効または期限切れです ({path}: {status})")
                if status == 404:
                    return LookupResult(None)
                if status < 400:
                    try:
                        return LookupResult(response.json())
                    except ValueError:
                        log.warning(f"{path}: JSONではない応答を受信しました")
                        return LookupResult(None, api_error=True)
                if status != 409 and status < 500:
                    log.warning(f"{path}: エラー応答 {status}（再試行しません）")
                    return LookupResult(None, api_error=True)
                reason = f"status {status}"

            if attempt < self.max_attempts:
                log.warning(f"{path}: {reason}, 試行 {attempt}/{self.max_attempts}")
                self._sleep(self.backoff_seconds * attempt)
                continue

            log.warning(f"{path}: {attempt}回試行しましたが失敗しました ({reason})")
        return LookupResult(None, api_error=True)

    @staticmethod
    def _content(payload: Any) -> List[Dict]:
        if isinstance(payload, dict):
            content = payload.get("content")
            if isinstance(content, list):
                return content
        return []

    # ------------------------------------------------------------------
    # 取引レポート
    # ------------------------------------------------------------------

    def fetch_transactions(self, start: date, end: date, account_type_ids: List[int] = None,
                           transaction_type: Optional[int] = None) -> List[Transaction]:
        """財務レポートから取引を取得（失敗時は FeegowReportError）"""
        body = {
            "report": "financial-movement",
            "DATA_INICIO": _fmt_slash(start),
            "DATA_FIM": _fmt_slash(end),
            "TIPO_CONTA_IDS": account_type_ids or [3],
        }
        if transaction_type:
            body["TIPO_MOVIMENTACAO_ID"] = transaction_type

        url = f"{self.base_url}/api/reports/generate"
        try:
            response = requests.post(url, headers=self.headers, json=body, timeout=self.timeout)
        except requests.RequestException as e:
            raise FeegowReportError(f"取引レポートの取得に失敗しました: {e}") from e

        if response.status_code in (401, 403):
            raise FeegowAuthError("APIトークンが無効または期限切れです")
        try:
            response.raise_for_status()
            payload = response.json()
        except (requests.HTTPError, ValueError) as e:
            raise FeegowReportError(f"取引レポートの取得に失敗しました: {e}") from e

        if not isinstance(payload, dict):
            raise FeegowReportError("取引レポートの形式が不正です")
        if payload.get("success") is False:
            raise FeegowReportError(payload.get("message") or "レポート生成エラー")

        rows = payload.get("data") or []
        if not isinstance(rows, list):
            raise FeegowReportError("取引レポートの data がリストではありません")

        try:
            transactions = [Transaction.from_api(row) for row in rows]
        except (AttributeError, TypeError, ValueError) as e:
            raise FeegowReportError(f"取引レポートの行を解釈できません: {e}") from e

        log.info(f"{len(transactions)}件の取引を取得しました")
        return transactions

    # ------------------------------------------------------------------
    # invoice
    # ------------------------------------------------------------------

    def fetch_invoice(self, invoice_id: int, on_date: Optional[date] = None,
                      date_range: tuple = None) -> LookupResult:
        params = {"invoice_id": invoice_id, "tipo_transacao": RECEIVABLE}
        if date_range:
            params["data_start"], params["data_end"] = date_range
        elif on_date:
            params["data_start"] = _fmt_dash(on_date)
            params["data_end"] = _fmt_dash(on_date)

        result = self._get("/api/financial/list-invoice", params)
        if result.api_error:
            log.warning(f"invoice {invoice_id} を取得できませんでした")
            return result

        content = self._content(result.data)
        if not content:
            return LookupResult(None)
        try:
            return LookupResult(Invoice.from_api(content[0]))
        except (AttributeError, TypeError, ValueError) as e:
            log.warning(f"invoice {invoice_id} の応答を解釈できません: {e}")
            return LookupResult(None, api_error=True)

    def fetch_invoice_items(self, invoice_id: int, on_date: Optional[date] = None) -> List[InvoiceItem]:
        invoice = self.fetch_invoice(invoice_id, on_date).data
        return invoice.items if invoice else []

    def fetch_invoice_proposal_date(self, invoice_id: int) -> Optional[date]:
        """invoice の作成日（提案日）。取得できなければ None"""
        result = self.fetch_invoice(invoice_id, date_range=PROPOSAL_DATE_RANGE)
        if result.api_error or result.data is None:
            return None
        return result.data.proposal_date

    # ------------------------------------------------------------------
    # 手技
    # ------------------------------------------------------------------

    def fetch_procedure(self, procedure_id: int) -> Optional[Dict]:
        """手技情報を取得（IDごとにプロセス内キャッシュ）"""
        key = int(procedure_id)
        if key in self._procedure_cache:
            return self._procedure_cache[key]

        result = self._get("/api/procedures/list", {"procedimento_id": key})
        if result.api_error:
            log.warning(f"手技 {key} を取得できませんでした")
            return None

        content = self._content(result.data)
        procedure = content[0] if content else None
        self._procedure_cache[key] = procedure
        return procedure

    def fetch_procedure_name(self, procedure_id: int) -> Optional[str]:
        procedure = self.fetch_procedure(procedure_id)
        return (procedure or {}).get("nome") or None

    def fetch_category_map(self, group_to_category: Dict[int, str],
                           overrides: Dict[int, Optional[str]]) -> Dict[int, Optional[str]]:
        """手技グループから ID → カテゴリ の対応表を作る（初回のみ取得）"""
        if self._category_map is not None:
            return self._category_map

        result = self._get("/api/procedures/groups", {})
        if result.api_error:
            log.warning("手技グループを取得できませんでした。名称パターンで分類します")
            groups = []
        else:
            groups = self._content(result.data)

        self._category_map = build_category_map(groups, group_to_category, overrides)
        log.info(f"手技グループの対応表を読み込みました: {len(self._category_map)}件")
        return self._category_map

    # ------------------------------------------------------------------
    # 提案・予約（バッチ単位のキャッシュ）
    # ------------------------------------------------------------------

    def list_patient_proposals(self, patient_id: int, on_date: date, ctx: BatchContext) -> List[Proposal]:
        """患者の当日の実行済み提案（患者＋日付ごとにバッチ内キャッシュ）"""
        key = (patient_id, on_date)
        if key in ctx.proposal_cache:
            return ctx.proposal_cache[key]

        result = self._get("/api/proposal/list", {
            "paciente_id": patient_id,
            "data_inicio": _fmt_dash(on_date),
            "data_fim": _fmt_dash(on_date),
        })
        proposals = []
        if result.api_error:
            log.warning(f"患者 {patient_id} の提案を取得できませんでした")
        else:
            try:
                proposals = [
                    Proposal.from_api(p) for p in self._content(result.data)
                    if p.get("status") == EXECUTED_STATUS
                ]
            except (AttributeError, TypeError, ValueError) as e:
                log.warning(f"患者 {patient_id} の提案を解釈できません: {e}")
            log.debug(f"患者 {patient_id} ({on_date}): 実行済み提案 {len(proposals)}件")

        ctx.proposal_cache[key] = proposals
        return proposals

    def search_appointments(self, patient_id: int, around: date, ctx: BatchContext,
                            window_days: int = 7) -> LookupResult:
        """前後 window_days 日の予約を検索（患者ごとにバッチ内キャッシュ）"""
        if patient_id in ctx.appointment_cache:
            return ctx.appointment_cache[patient_id]

        start = around - timedelta(days=window_days)
        end = around + timedelta(days=window_days)
        result = self._get("/api/appoints/search", {
            "paciente_id": patient_id,
            "data_start": _fmt_dash(start),
            "data_end": _fmt_dash(end),
        })
        if result.api_error:
            log.warning(f"患者 {patient_id} の予約を取得できませんでした")
            lookup = LookupResult([], api_error=True)
        else:
            try:
                lookup = LookupResult([Appointment.from_api(a) for a in self._content(result.data)])
            except (AttributeError, TypeError, ValueError) as e:
                log.warning(f"患者 {patient_id} の予約を解釈できません: {e}")
                lookup = LookupResult([], api_error=True)

        ctx.appointment_cache[patient_id] = lookup
        return lookup
