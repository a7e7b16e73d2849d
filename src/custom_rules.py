"""
クリニック固有の分類ルール定義
このファイルを編集して、自院の手技グループ・名称パターンに合わせたルールを追加してください
"""

# 分類先カテゴリ（スプレッドシートの列名）
AVALIACAO = "AVALIACAO"          # 評価（初診）
TRATAMENTO = "TRATAMENTO"
DR_RIGATTI = "DR_RIGATTI"        # 医師プロトコル・再購入
IMPLANTE = "IMPLANTE"
SORO_DR = "SORO_DR"              # 点滴療法
TIRZEPATIDA = "TIRZEPATIDA"
APLICACOES = "APLICACOES"        # 注射
ONLINE = "ONLINE"
COMISSAO = "COMISSAO"
NUTRIS = "NUTRIS"                # 栄養士
EXTRA = "EXTRA"                  # 未分類はここへ
JUROS_CARTAO = "JUROS_CARTAO"
ESTORNO_PROC = "ESTORNO_PROC"

# 予約のない評価（前受金）。評価合計には含めない
SINAL_ANTECIPADO = "SINAL_ANTECIPADO"

EVALUATION_CATEGORY = AVALIACAO
ADVANCE_DEPOSIT_CATEGORY = SINAL_ANTECIPADO
FALLBACK_CATEGORY = EXTRA

# 破棄（問い合わせチャット等、請求対象外）
DISCARD = None

# 治療合計に含めるカテゴリ（評価と返金は除く）
TREATMENT_CATEGORIES = [
    DR_RIGATTI, IMPLANTE, SORO_DR, TIRZEPATIDA,
    APLICACOES, ONLINE, COMISSAO, NUTRIS, EXTRA,
]

# 手技グループID → 既定カテゴリ
GROUP_TO_CATEGORY = {
    1: IMPLANTE,     # ホルモンインプラント
    2: APLICACOES,   # 注射
    # 3: 診察 → 個別オーバーライドで振り分け
    4: SORO_DR,      # 点滴
    5: EXTRA,        # 検査
}

# 手技ID単位のオーバーライド（グループより優先）
CATEGORY_OVERRIDES = {
    # チルゼパチド（グループ2だが専用列）
    58: TIRZEPATIDA,
    144: TIRZEPATIDA,   # Tirzepatida 90mg/3.6ml
    # グループ3 - 診察
    16: AVALIACAO,      # 1ª Consulta
    17: ONLINE,         # Consulta Online - Dr Victor
    18: NUTRIS,         # Consulta Online - Nutricionista（nutri > online）
    19: ONLINE,         # Consulta Online - Dr Luiz
    20: DISCARD,        # Chat/Dúvidas
    22: NUTRIS,         # Consulta Nutricional Avulsa
    23: AVALIACAO,      # Retorno - Dr
    24: NUTRIS,         # Retorno - Nutricionista
    104: DR_RIGATTI,    # Consulta Médica de Recompra
    105: DR_RIGATTI,
    106: DR_RIGATTI,
    107: DR_RIGATTI,
    108: DR_RIGATTI,
    109: NUTRIS,        # 1ª-4ª Consulta Protocolo Nutricional
    110: NUTRIS,
    111: NUTRIS,
    112: NUTRIS,
    137: ONLINE,        # Recompra Online
}

# 名称パターン（小文字の部分一致、上から順に評価）
# 具体的なパターンを汎用パターン（consulta）より前に置くこと
NAME_PATTERNS = [
    ("nutricional", NUTRIS),
    ("avalia", AVALIACAO),
    ("rigatti", DR_RIGATTI),
    ("recompra", DR_RIGATTI),
    ("protocolo", DR_RIGATTI),
    ("online", ONLINE),
    ("consulta", AVALIACAO),
    ("victor", EXTRA),
    ("implante", IMPLANTE),
    ("soro", SORO_DR),
    ("soroterapia", SORO_DR),
    ("noripurum", SORO_DR),
    ("tirzepatida", TIRZEPATIDA),
    ("injetável", APLICACOES),
    ("injetavel", APLICACOES),
    ("cipionato", APLICACOES),
    ("testosterona", APLICACOES),
    ("blend", APLICACOES),
    ("gh ", APLICACOES),
    ("genotropin", APLICACOES),
    ("omnitrope", APLICACOES),
    ("nutri", NUTRIS),
    ("tratamento proposto", DR_RIGATTI),
    ("juros", JUROS_CARTAO),
    ("estorno", ESTORNO_PROC),
]


# 支払チャネル
DINHEIRO = "DINHEIRO"
SICOOB = "SICOOB"
SAFRA = "SAFRA"            # Safra Pay（カード端末）
PIX_SAFRA = "PIX_SAFRA"
INFINITE = "INFINITE"
PIX = "PIX"                # Banco Cora（PIX/振込）
CHEQUE = "CHEQUE"
BOLETO = "BOLETO"
PGTO_OUTROS = "OUTROS"

PAYMENT_CHANNELS = [DINHEIRO, SICOOB, SAFRA, PIX_SAFRA, INFINITE, PIX, CHEQUE, BOLETO, PGTO_OUTROS]

# 口座名で判定できない場合の FormaPagamentoID → チャネル
PAYMENT_METHOD_RULES = {
    1: DINHEIRO,    # 現金
    2: CHEQUE,
    3: PIX,         # 振込
    4: BOLETO,
    5: PIX,         # DOC
    6: PIX,         # TED
    7: PIX,
    8: INFINITE,    # クレジット（既定はInfinitePay）
    9: INFINITE,    # デビット
    10: INFINITE,
    15: PIX,
}
