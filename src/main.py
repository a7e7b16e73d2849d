import argparse
import json
import logging
import os
import sys
from datetime import date, datetime, timedelta
from typing import List, Optional

from dotenv import load_dotenv

from batch_reconciler import BatchReconciler, DayResult
from config_loader import load_reconcile_config
from environment_validator import EnvironmentValidator
from feegow_client import FeegowAPIError, FeegowClient
from ledger_models import parse_api_date

load_dotenv()


def default_reference_date(today: date = None) -> date:
    today = today or date.today()
    if os.getenv("FETCH_PREVIOUS_DAY", "false").lower() == "true":
        return today - timedelta(days=1)
    return today


def log_level() -> int:
    """LOG_LEVEL を数値レベルに変換（不明な値は INFO）"""
    level = logging.getLevelName(os.getenv("LOG_LEVEL", "INFO").strip().upper())
    return level if isinstance(level, int) else logging.INFO


def save_results(results: List[DayResult], filename: Optional[str] = None) -> str:
    """処理結果をJSONファイルに保存"""
    if not filename:
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        filename = f"results_{timestamp}.json"

    with open(filename, "w", encoding="utf-8") as f:
        json.dump({
            "timestamp": datetime.now().isoformat(),
            "days": [r.to_dict() for r in results],
        }, f, ensure_ascii=False, indent=2)

    print(f"\n結果を {filename} に保存しました")
    return filename


def print_summary(result: DayResult):
    print(f"\n📅 {result.date.isoformat()}: 取引 {len(result.transactions)}件 / {len(result.groups)}グループ")
    for source, count in sorted(result.source_counts().items()):
        print(f"  {source}: {count}件")
    if result.low_confidence:
        print(f"  ⚠️ 均等割り（要確認）: {len(result.low_confidence)}件")
    if result.failed:
        print(f"  ❌ 明細化エラー: {len(result.failed)}件")
        for t in result.failed[:10]:
            print(f"    • {t.transaction.patient_name}: {t.error}")


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Feegow の入金を提案・invoice と突合して分類する")
    parser.add_argument("--start", help="開始日 (DD/MM/YYYY または YYYY-MM-DD)")
    parser.add_argument("--end", help="終了日（省略時は開始日と同じ）")
    parser.add_argument("--output", help="結果JSONの出力先")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    """メイン処理"""
    args = parse_args(argv)
    logging.basicConfig(
        level=log_level(),
        format="%(asctime)s [%(levelname)s] [%(name)s] %(message)s",
    )

    print("=== Feegow自動仕訳処理を開始します ===")
    print(f"実行時刻: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")

    validator = EnvironmentValidator()
    env_result = validator.validate_all()
    validator.print_report(env_result)
    if env_result["status"] != "pass":
        return 1

    try:
        start = parse_api_date(args.start) if args.start else default_reference_date()
        end = parse_api_date(args.end) if args.end else start
    except ValueError as e:
        print(f"エラー: {e}")
        return 1
    if end < start:
        print("エラー: 終了日が開始日より前です")
        return 1

    print(f"📊 対象期間: {start.isoformat()} 〜 {end.isoformat()}")

    cfg = load_reconcile_config()
    client = FeegowClient.from_config(os.getenv("FEEGOW_API_TOKEN").strip(), os.getenv("FEEGOW_API_URL"), cfg)

    try:
        reconciler = BatchReconciler.from_config(client, cfg)
        results = reconciler.run(start, end)
    except FeegowAPIError as e:
        # 途中までの結果は保存しない
        print(f"\n致命的なエラーが発生しました: {e}")
        return 1

    for result in results:
        print_summary(result)

    if not any(r.transactions for r in results):
        print("処理対象の取引はありません")
        return 0

    save_results(results, args.output)
    print("\n=== 処理完了 ===")
    return 0


if __name__ == "__main__":
    sys.exit(main())
