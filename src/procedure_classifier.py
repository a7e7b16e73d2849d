"""
手技の分類
優先順位: 1) 手技ID（グループ対応表）  2) 名称パターン  3) 既定カテゴリ（EXTRA）
"""

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from custom_rules import FALLBACK_CATEGORY, GROUP_TO_CATEGORY, CATEGORY_OVERRIDES, NAME_PATTERNS
from ledger_models import PROVENANCE_FALLBACK, PROVENANCE_ID, PROVENANCE_NAME


@dataclass(frozen=True)
class Classification:
    category: Optional[str]
    provenance: str


def build_category_map(groups: Iterable[Dict], group_to_category: Dict[int, str] = None,
                       overrides: Dict[int, Optional[str]] = None) -> Dict[int, Optional[str]]:
    """手技グループ一覧から ID → カテゴリ の対応表を作る

    Args:
        groups: /api/procedures/groups の content（各グループに procedimentos のリスト）
        group_to_category: グループID → 既定カテゴリ
        overrides: 手技ID単位の上書き。値が None の手技は破棄として登録する

    Returns:
        ID → カテゴリ（None は明示的な破棄）
    """
    group_to_category = GROUP_TO_CATEGORY if group_to_category is None else group_to_category
    overrides = CATEGORY_OVERRIDES if overrides is None else overrides

    mapping: Dict[int, Optional[str]] = {}
    for group in groups or []:
        if not isinstance(group, dict):
            continue
        group_category = group_to_category.get(group.get("id"))
        for proc in group.get("procedimentos") or []:
            proc_id = proc.get("id") if isinstance(proc, dict) else None
            if proc_id is None:
                continue
            if proc_id in overrides:
                mapping[proc_id] = overrides[proc_id]
            elif group_category:
                mapping[proc_id] = group_category

    # グループに現れない手技でも上書き指定は有効
    for proc_id, category in overrides.items():
        mapping.setdefault(proc_id, category)
    return mapping


class ProcedureClassifier:
    """手技名・IDから分類先カテゴリを決める（副作用なし）"""

    def __init__(self, category_map: Dict[int, Optional[str]],
                 name_patterns: List[Tuple[str, str]] = None,
                 fallback_category: str = FALLBACK_CATEGORY):
        self.category_map = dict(category_map or {})
        self.name_patterns = [(p.lower(), c) for p, c in (name_patterns if name_patterns is not None else NAME_PATTERNS)]
        self.fallback_category = fallback_category

    def classify(self, name: str, procedure_id: Optional[int] = None) -> Classification:
        if procedure_id is not None:
            try:
                key = int(procedure_id)
            except (TypeError, ValueError):
                key = None
            if key is not None and key in self.category_map:
                return Classification(self.category_map[key], PROVENANCE_ID)

        normalized = (name or "").lower()
        for pattern, category in self.name_patterns:
            if pattern in normalized:
                return Classification(category, PROVENANCE_NAME)

        return Classification(self.fallback_category, PROVENANCE_FALLBACK)
