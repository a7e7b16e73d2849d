"""
環境変数検証 - Feegow 自動仕訳システム用

起動時に必須環境変数の存在と値の形式を確認する。
"""

import os
import re
from datetime import datetime
from typing import Dict


class EnvironmentValidator:
    """環境変数の完全性チェックと検証を行うクラス"""

    # 必須環境変数の定義
    REQUIRED_VARS = {
        "FEEGOW_API_TOKEN": {
            "description": "Feegow API トークン (x-access-token)",
            "pattern": r"^\S+$",
            "example": "eyJ0eXAiOiJKV1QiLCJhbGciOiJIUzI1NiJ9..."
        },
    }

    # オプション環境変数
    OPTIONAL_VARS = {
        "FEEGOW_API_URL": {
            "description": "Feegow API のベースURL",
            "pattern": r"^https?://\S+$"
        },
        "FETCH_PREVIOUS_DAY": {
            "description": "前日分を処理する (true/false)",
            "pattern": r"^(true|false|1|0)$"
        },
        "LOG_LEVEL": {
            "description": "ログレベル",
            "pattern": r"^(DEBUG|INFO|WARNING|ERROR)$"
        },
    }

    def __init__(self, environ: Dict[str, str] = None):
        self.environ = os.environ if environ is None else environ
        self.missing_vars = []
        self.invalid_vars = []
        self.warnings = []

    def validate_all(self) -> Dict:
        """全環境変数の検証を実行"""
        for var_name, config in self.REQUIRED_VARS.items():
            value = (self.environ.get(var_name) or "").strip()
            if not value:
                self.missing_vars.append(var_name)
            elif not re.match(config["pattern"], value):
                self.invalid_vars.append({
                    "name": var_name,
                    "issue": "フォーマット不正",
                    "expected": config["example"]
                })

        for var_name, config in self.OPTIONAL_VARS.items():
            value = self.environ.get(var_name)
            if not value:
                continue
            if not re.match(config["pattern"], value, re.IGNORECASE):
                # URLが不正だとすべての呼び出しが失敗するためエラー扱い
                if var_name == "FEEGOW_API_URL":
                    self.invalid_vars.append({"name": var_name, "issue": "URL形式ではありません"})
                else:
                    self.warnings.append({"name": var_name, "issue": "フォーマット警告",
                                          "description": config["description"]})

        return {
            "timestamp": datetime.now().isoformat(),
            "status": "pass" if not self.missing_vars and not self.invalid_vars else "fail",
            "missing_required": self.missing_vars,
            "invalid_format": self.invalid_vars,
            "warnings": self.warnings,
        }

    def print_report(self, results: Dict):
        if results["status"] == "pass":
            print("✅ 環境変数検証: 合格")
        else:
            print("❌ 環境変数検証: 失敗")
            for name in results["missing_required"]:
                print(f"  ❌ {name}: 未設定 ({self.REQUIRED_VARS[name]['description']})")
            for item in results["invalid_format"]:
                print(f"  ⚠️  {item['name']}: {item['issue']}")
        for item in results["warnings"]:
            print(f"  ⚠️  {item['name']}: {item['issue']}")
