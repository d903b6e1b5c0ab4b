"""
Keyword-based categorization.

Deterministic rules used when the LLM is unavailable or fails:
- an ordered keyword table of Brazilian merchants, utilities and services
- detection of transfers to/from individuals (PIX between people)

Matching is case and accent insensitive. Keywords of up to 3 characters
("99", "oi", "bar", "gas") must match a whole word, otherwise "oi" would
match "Coimbra" and "bar" would match "Barbearia".
"""

import re
import unicodedata
from dataclasses import dataclass
from typing import Optional

from pocket.models import (
    CategorizationConfidence,
    CategorizationResult,
    ExpenseCategory,
)

SHORT_KEYWORD_LENGTH = 3

PIX_SUBCATEGORY = "PIX Pessoa Física"
TRANSFER_SUBCATEGORY = "Transferência Pessoa Física"


@dataclass(frozen=True)
class KeywordRule:
    category: ExpenseCategory
    subcategory: str
    is_fixed_cost: bool
    keywords: tuple[str, ...]


# Order matters: the first rule with a matching keyword wins.
KEYWORD_RULES: tuple[KeywordRule, ...] = (
    KeywordRule(
        ExpenseCategory.HOUSING, "Contas da casa", True,
        (
            "energia", "luz", "eletricidade", "enel", "coel", "celpe",
            "equatorial", "cemig", "copel", "elektro", "light", "cosern",
            "celg", "ceee", "energetica", "eletrica", "companhia",
            "agua", "saneamento", "cagece", "sabesp", "embasa", "cedae",
            "caesb", "sanepar",
            "gas", "ultragaz", "comgas",
            "condominio", "aluguel", "iptu", "seguro fianca", "imobiliaria",
        ),
    ),
    KeywordRule(
        ExpenseCategory.HOUSING, "Comunicação", True,
        (
            "vivo", "claro", "tim", "oi", "brisanet", "mob", "multiplay",
            "net", "fibra", "telecom", "internet", "telefone",
        ),
    ),
    KeywordRule(
        ExpenseCategory.OTHER, "Compras online", False,
        ("mercado livre", "amazon.com", "shopee", "magalu", "aliexpress"),
    ),
    KeywordRule(
        ExpenseCategory.GROCERIES, "Mercado", False,
        (
            "supermercado", "mercadinho", "atacadao", "assai", "carrefour",
            "pao de acucar", "sao luiz", "cometa", "hortifruti", "mercearia",
            "mercado", "feira", "acougue",
        ),
    ),
    KeywordRule(
        ExpenseCategory.HEALTH, "Saúde e farmácia", False,
        (
            "farmacia", "drogasil", "pague menos", "extrafarma", "drogaria",
            "unimed", "hapvida", "laboratorio", "consulta", "medico",
            "hospital", "clinica", "dentista", "plano de saude",
        ),
    ),
    KeywordRule(
        ExpenseCategory.TRANSPORT, "Transporte", False,
        (
            "uber", "99", "99pop", "posto", "gasolina", "etanol",
            "combustivel", "shell", "ipiranga", "petrobras", "ale",
            "estacionamento", "zona azul", "sem parar", "veloe", "taxi",
            "metro", "onibus",
        ),
    ),
    KeywordRule(
        ExpenseCategory.DINING_OUT, "Alimentação fora", False,
        (
            "ifood", "rappi", "ze delivery", "restaurante", "bar",
            "churrascaria", "pizzaria", "burger", "burguer", "mcdonald",
            "burger king", "subway", "coco bambu", "padaria", "cafe",
            "sorvete", "lanchonete", "hamburger", "hamburguer", "pizza",
            "delivery",
        ),
    ),
    KeywordRule(
        ExpenseCategory.LEISURE, "Lazer e streaming", False,
        (
            "netflix", "spotify", "amazon prime", "disney", "hbo",
            "globoplay", "cinema", "ingresso", "sympla", "eventim", "show",
            "teatro", "streaming", "jogo", "game",
        ),
    ),
    KeywordRule(
        ExpenseCategory.CLOTHING, "Roupas e calçados", False,
        (
            "shein", "renner", "riachuelo", "zara", "c&a", "roupa",
            "calcado", "sapato", "tenis", "loja",
        ),
    ),
)

COMPANY_INDICATORS: tuple[str, ...] = (
    "ltda", "me", "epp", "eireli", "s.a", "s/a", "sa", "sociedade",
    "comercio", "servicos", "supermercado", "loja", "restaurante",
    "farmacia", "hospital", "clinica", "posto", "shopping", "mercado",
    "bar", "padaria", "magazine", "distribuidora", "atacado", "varejo",
    "delivery", "ifood", "uber",
)

_TRANSFER_WORDS = re.compile(
    r"(?<!\w)(pix|transferencia|transferência|enviado|recebido|para|de)(?!\w)",
    re.IGNORECASE,
)


def normalize(text: str) -> str:
    """Lowercase and strip accents: "Pão de Açúcar" -> "pao de acucar"."""
    decomposed = unicodedata.normalize("NFKD", text.lower())
    return "".join(c for c in decomposed if not unicodedata.combining(c))


def contains_keyword(normalized_text: str, keyword: str) -> bool:
    """Substring match, or whole-word match for short keywords."""
    if len(keyword) <= SHORT_KEYWORD_LENGTH:
        pattern = rf"(?<!\w){re.escape(keyword)}(?!\w)"
        return re.search(pattern, normalized_text) is not None
    return keyword in normalized_text


def match_keyword_rule(name: str) -> Optional[KeywordRule]:
    """First rule whose keyword appears in the name."""
    normalized = normalize(name)
    for rule in KEYWORD_RULES:
        if any(contains_keyword(normalized, kw) for kw in rule.keywords):
            return rule
    return None


def categorize_by_keywords(name: str) -> CategorizationResult:
    """Categorize an establishment name with the keyword table; `other` when nothing matches."""
    rule = match_keyword_rule(name or "")
    if rule is None:
        return CategorizationResult(
            category=ExpenseCategory.OTHER,
            subcategory="Outros",
            confidence=CategorizationConfidence.LOW,
            source="default",
        )
    return CategorizationResult(
        category=rule.category,
        subcategory=rule.subcategory,
        is_fixed_cost=rule.is_fixed_cost,
        confidence=CategorizationConfidence.MEDIUM,
        reasoning="Keyword match on establishment name",
        source="keywords",
    )


def is_individual_person(text: Optional[str]) -> bool:
    """
    Does this look like a person's name rather than a business?

    "PIX enviado para Maria Silva" -> True
    "Padaria Pão Quente LTDA" -> False
    """
    if not text:
        return False

    normalized = normalize(text)
    if any(contains_keyword(normalized, indicator) for indicator in COMPANY_INDICATORS):
        return False

    cleaned = _TRANSFER_WORDS.sub("", text).strip()
    words = [w for w in cleaned.split() if len(w) > 1]

    if not 2 <= len(words) <= 4:
        return False

    valid_lengths = all(2 <= len(w) <= 15 for w in words)
    capitalized = sum(1 for w in words if w[0].isupper())
    return valid_lengths and capitalized >= len(words) * 0.5


def categorize_bank_transaction(
    description: str,
    provider_category: Optional[str] = None,
    receiver_name: Optional[str] = None,
    payer_name: Optional[str] = None,
) -> Optional[CategorizationResult]:
    """
    Detect transfers to or from individuals.

    Returns None when the transaction does not look like one; callers
    fall back to other categorizers.
    """
    if (provider_category or "").lower() == "pix":
        if is_individual_person(receiver_name) or is_individual_person(payer_name):
            return _personal_debt(PIX_SUBCATEGORY)

    if is_individual_person(description):
        subcategory = PIX_SUBCATEGORY if "pix" in description.lower() else TRANSFER_SUBCATEGORY
        return _personal_debt(subcategory)

    return None


def _personal_debt(subcategory: str) -> CategorizationResult:
    return CategorizationResult(
        category=ExpenseCategory.PERSONAL_DEBTS,
        subcategory=subcategory,
        confidence=CategorizationConfidence.MEDIUM,
        reasoning="Transfer between individuals",
        source="rules",
    )
