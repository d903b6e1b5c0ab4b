"""
AI Agents for Pocket

DESIGN DECISION: Gemini is used for two narrow jobs:
1. Suggesting a category for an expense or bank transaction
2. Answering questions about the user's own finances

CRITICAL BOUNDARIES:

1. CATEGORIZATION AGENT:
   - CAN: Suggest category, subcategory and fixed/variable cost
   - CANNOT: Persist anything (the caller decides)
   - MUST: Return a known category, otherwise the keyword rules answer

2. ASSISTANT AGENT:
   - CAN: Explain and advise FROM the FinancialContext it is given
   - CANNOT: Read storage or invent numbers
   - MUST: Still answer (with a plain data summary) when the LLM fails

The LLM is a TRANSLATOR, not an ORACLE.
Every LLM call has a deterministic fallback, so the app keeps working
without a Gemini key.
"""

import json
import re
from decimal import Decimal
from typing import Any, Optional, Sequence
from uuid import UUID

import google.generativeai as genai
import structlog
from pydantic import BaseModel

from pocket.audit import AuditLogger
from pocket.config import get_settings
from pocket.finance.balance import balance_source_label
from pocket.finance.categories import categorize_bank_transaction, categorize_by_keywords
from pocket.finance.currency import format_brl
from pocket.models import (
    CATEGORY_LABELS,
    AuditEventBuilder,
    CategorizationConfidence,
    CategorizationResult,
    ChatMessage,
    ChatRole,
    ExpenseCategory,
    MerchantAlias,
    utc_now,
)
from pocket.queries import FinancialContext
from pocket.services.storage import InsightsStorageInterface, StorageError

logger = structlog.get_logger()

CATEGORIZATION_MAX_TOKENS = 300


def build_gemini_model(temperature: float, max_output_tokens: int) -> Any:
    """Configure Google Generative AI and return a model."""
    settings = get_settings().gemini
    genai.configure(api_key=settings.api_key)
    return genai.GenerativeModel(
        model_name=settings.model_name,
        generation_config={
            "temperature": temperature,
            "max_output_tokens": max_output_tokens,
        }
    )


def extract_json(text: str) -> dict:
    """Pull the JSON object out of an LLM reply (which may be fenced or chatty)."""
    start = text.find("{")
    end = text.rfind("}") + 1
    if start < 0 or end <= start:
        raise ValueError(f"No JSON object in response: {text[:100]}")
    return json.loads(text[start:end])


def alias_key(name: str) -> str:
    """
    Storage key of a learned merchant alias.

    "Padaria Sao Jose" -> "merchant_alias_padaria_sao_jose"
    """
    normalized = (name or "").lower().strip()
    return "merchant_alias_" + re.sub(r"[^a-z0-9]", "_", normalized)


CATEGORIZATION_PROMPT = """Você é o assistente financeiro do app Pocket.
Sua tarefa é categorizar gastos com MÁXIMA PRECISÃO.

# CATEGORIAS DISPONÍVEIS:
- housing: aluguel, conta de luz, água, gás, internet, condomínio
- groceries: supermercado, feira, açougue, padaria para compras de casa
- dining_out: restaurante, lanchonete, delivery, ifood, bar, café
- transport: combustível, uber, estacionamento, mecânica
- health: farmácia, plano de saúde, consultas, exames
- education: escola, faculdade, cursos, material escolar
- leisure: cinema, streaming (netflix, spotify), viagens, academia, shows
- clothing: roupas, calçados, acessórios
- beauty: salão, barbearia, cosméticos
- electronics: gadgets, games, acessórios tech
- pets: pet shop, veterinário, ração
- savings, pension, investments: poupança, previdência, aplicações
- credit_card, loans, financing: fatura do cartão, empréstimos, financiamentos
- transfers: transferências entre contas próprias
- personal_debts: PIX ou transferências para pessoas físicas
- other: quando não se encaixar em nenhuma

# CUSTO FIXO OU VARIÁVEL (is_fixed_cost):
- true: gastos RECORRENTES, mensais, previstos (aluguel, plano de saúde, assinatura, conta de luz, escola)
- false: gastos EVENTUAIS, pontuais (farmácia eventual, restaurante, cinema, presente, roupa)
- Na dúvida, use false.

# FORMATO DE RESPOSTA (RETORNE APENAS JSON VÁLIDO):
{{"category": "categoria_exata", "subcategory": "Nome do estabelecimento ou tipo", "is_fixed_cost": false, "confidence": "high|medium|low", "reasoning": "Breve explicação de 1 linha"}}

Categorize este gasto:
{details}

Retorne APENAS o JSON de categorização."""


class ExpenseCategorizer:
    """
    Categorizes expenses and bank transactions.

    Order of precedence:
    1. A merchant alias the user taught us (confidence >= alias_min_confidence)
    2. Gemini
    3. Transfer-to-person rules, then the merchant keyword table
    4. `other` with low confidence

    Args:
        insights_storage: Where merchant aliases live. Without it aliases are skipped.
        audit_logger: Records every categorization when given
        model: Anything with an async `generate_content_async(prompt)`;
            built from settings when omitted and use_llm is True
        use_llm: Set to False to run on rules only
    """

    def __init__(
        self,
        insights_storage: Optional[InsightsStorageInterface] = None,
        audit_logger: Optional[AuditLogger] = None,
        model: Any = None,
        use_llm: bool = True,
        alias_min_confidence: float = 0.8,
    ):
        self._insights = insights_storage
        self._audit = audit_logger
        self._alias_min_confidence = alias_min_confidence
        self._model = model
        if self._model is None and use_llm:
            settings = get_settings().gemini
            self._model = build_gemini_model(
                temperature=settings.categorization_temperature,
                max_output_tokens=CATEGORIZATION_MAX_TOKENS,
            )

    async def categorize(
        self,
        establishment: str,
        amount: Optional[Decimal] = None,
        provider_category: Optional[str] = None,
        receiver_name: Optional[str] = None,
        payer_name: Optional[str] = None,
        items: Optional[Sequence[str]] = None,
        user_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> CategorizationResult:
        result = None

        if user_id:
            result = await self._from_alias(user_id, establishment)

        if result is None and self._model is not None:
            result = await self._from_llm(
                establishment, amount, provider_category, receiver_name, payer_name, items
            )

        if result is None:
            result = self._from_rules(establishment, provider_category, receiver_name, payer_name)

        if self._audit:
            await self._audit.log(AuditEventBuilder.expense_categorized(
                user_id=user_id,
                establishment=establishment,
                category=result.category.value,
                source=result.source,
                confidence=result.confidence.value,
                correlation_id=correlation_id,
            ))

        return result

    async def _from_alias(self, user_id: str, establishment: str) -> Optional[CategorizationResult]:
        if self._insights is None:
            return None

        key = alias_key(establishment)
        try:
            alias = await self._insights.get_alias(user_id, key)
            if alias is None or alias.confidence < self._alias_min_confidence:
                return None
            await self._insights.touch_alias(user_id, key, utc_now())
        except StorageError as e:
            logger.warning("alias_lookup_failed", user_id=user_id, key=key, error=str(e))
            return None

        return CategorizationResult(
            category=alias.category,
            subcategory=alias.subcategory or alias.establishment_name,
            confidence=CategorizationConfidence.HIGH,
            reasoning=f'Aprendido: "{establishment}" = "{alias.establishment_name}"',
            source="alias",
        )

    async def _from_llm(
        self,
        establishment: str,
        amount: Optional[Decimal],
        provider_category: Optional[str],
        receiver_name: Optional[str],
        payer_name: Optional[str],
        items: Optional[Sequence[str]],
    ) -> Optional[CategorizationResult]:
        details = [f'Nome do estabelecimento: "{establishment}"']
        if amount:
            details.append(f"Valor: {format_brl(amount)}")
        if provider_category:
            details.append(f"Tipo de transação: {provider_category}")
        if receiver_name:
            details.append(f"Recebedor: {receiver_name}")
        if payer_name:
            details.append(f"Pagador: {payer_name}")
        if items:
            details.append("Itens do comprovante:")
            details.extend(f"- {item}" for item in items)

        prompt = CATEGORIZATION_PROMPT.format(details="\n".join(details))

        try:
            response = await self._model.generate_content_async(prompt)
            data = extract_json(response.text.strip())

            category = ExpenseCategory(str(data.get("category", "")).lower())
            subcategory = str(data.get("subcategory") or "").strip()
            if not subcategory:
                raise ValueError("Empty subcategory")

            try:
                confidence = CategorizationConfidence(str(data.get("confidence", "medium")).lower())
            except ValueError:
                confidence = CategorizationConfidence.MEDIUM

            return CategorizationResult(
                category=category,
                subcategory=subcategory[:100],
                is_fixed_cost=data.get("is_fixed_cost") is True,
                confidence=confidence,
                reasoning=data.get("reasoning"),
                source="llm",
            )
        except Exception as e:
            logger.warning("llm_categorization_failed", establishment=establishment, error=str(e))
            return None

    def _from_rules(
        self,
        establishment: str,
        provider_category: Optional[str],
        receiver_name: Optional[str],
        payer_name: Optional[str],
    ) -> CategorizationResult:
        result = categorize_bank_transaction(
            establishment, provider_category, receiver_name, payer_name
        )
        if result is None:
            result = categorize_by_keywords(establishment)

        # Rules are a fallback: never claim more than low confidence
        return result.model_copy(update={"confidence": CategorizationConfidence.LOW})

    async def learn_alias(
        self,
        user_id: str,
        raw_name: str,
        establishment_name: str,
        category: ExpenseCategory,
        subcategory: Optional[str] = None,
    ) -> MerchantAlias:
        """Remember the user's category for a merchant (after they correct or confirm it)."""
        if self._insights is None:
            raise StorageError("No insights storage configured")

        alias = MerchantAlias(
            user_id=user_id,
            key=alias_key(raw_name),
            raw_name=raw_name,
            establishment_name=establishment_name,
            category=category,
            subcategory=subcategory,
            confidence=1.0,
            last_used_at=utc_now(),
        )
        await self._insights.save_alias(alias)

        if self._audit:
            await self._audit.log(AuditEventBuilder.alias_learned(
                user_id=user_id,
                alias_key=alias.key,
                category=category.value,
            ))

        return alias


# =============================================================================
# ASSISTANT
# =============================================================================

ASSISTANT_PROMPT = """Você é o assistente financeiro do app Pocket: um consultor pessoal cordial e objetivo.
Você ajuda o usuário a entender os próprios gastos e dá conselhos práticos.

Regras:
- Use SOMENTE os dados do contexto abaixo quando falar de valores. Nunca invente números.
- Se os dados não respondem a pergunta, diga isso claramente.
- Valores em reais, no formato R$ 1.234,56.
- Respostas curtas, em português do Brasil.

{context}

Conversa:
{transcript}

Assistente:"""


class AssistantReply(BaseModel):
    """What the assistant answered, and whether it came from the fallback."""

    text: str
    used_fallback: bool = False


def build_context_block(context: FinancialContext) -> str:
    """Plain-text summary of the user's finances, given to the LLM and used as fallback answer."""
    lines = [
        f"DADOS FINANCEIROS DO USUÁRIO ({context.period_start:%d/%m/%Y} a {context.period_end:%d/%m/%Y}):",
        f"- Total gasto no mês: {format_brl(context.total_spent)} em {context.expense_count} gastos",
    ]

    if context.category_breakdown:
        lines.append("- Gastos por categoria:")
        for category, total in context.top_categories(limit=len(context.category_breakdown)):
            lines.append(f"  - {CATEGORY_LABELS[category]}: {format_brl(total)}")

    if context.recent_expenses:
        lines.append("- Gastos recentes:")
        for expense in context.recent_expenses[:5]:
            lines.append(
                f"  - {expense.establishment_name}: {format_brl(expense.amount)} "
                f"em {expense.expense_date:%d/%m/%Y}"
            )

    if context.balance is not None:
        lines.append(
            f"- Saldo disponível: {format_brl(context.balance.remaining_balance)} "
            f"({balance_source_label(context.balance.source)})"
        )
        lines.append(f"- Renda total: {format_brl(context.balance.total_income)}")

    if context.budgets:
        lines.append("- Orçamentos:")
        for status in context.budgets:
            lines.append(
                f"  - {CATEGORY_LABELS[status.budget.category]}: {format_brl(status.spent)} "
                f"de {format_brl(status.budget.amount)} ({status.percentage}%)"
            )

    habits = [p for p in context.patterns if p.is_active][:5]
    if habits:
        lines.append("- Padrões identificados:")
        for pattern in habits:
            lines.append(f"  - {pattern.pattern_type.value}: {pattern.pattern_key}")

    return "\n".join(lines)


class FinanceAssistant:
    """
    Conversational assistant over the user's FinancialContext.

    Args:
        model: Anything with an async `generate_content_async(prompt)`;
            built from settings when omitted and use_llm is True
        use_llm: Set to False to always answer with the data summary
    """

    def __init__(self, model: Any = None, use_llm: bool = True):
        self._model = model
        if self._model is None and use_llm:
            settings = get_settings().gemini
            self._model = build_gemini_model(
                temperature=settings.assistant_temperature,
                max_output_tokens=settings.max_tokens,
            )

    async def reply(
        self,
        history: Sequence[ChatMessage],
        context: FinancialContext,
    ) -> AssistantReply:
        """
        Answer the last user message in `history`.

        The LLM only ever sees the context block and the conversation.
        """
        context_block = build_context_block(context)

        if self._model is not None:
            transcript = "\n".join(
                f"{'Usuário' if m.role == ChatRole.USER else 'Assistente'}: {m.content}"
                for m in history
            )
            prompt = ASSISTANT_PROMPT.format(context=context_block, transcript=transcript)
            try:
                response = await self._model.generate_content_async(prompt)
                text = response.text.strip()
                if text:
                    return AssistantReply(text=text)
            except Exception as e:
                logger.warning("assistant_llm_failed", user_id=context.user_id, error=str(e))

        return AssistantReply(text=self._fallback_answer(context, context_block), used_fallback=True)

    def _fallback_answer(self, context: FinancialContext, context_block: str) -> str:
        if not context.has_data:
            return (
                "Ainda não tenho dados seus para analisar. "
                "Registre alguns gastos ou conecte sua conta bancária e pergunte de novo."
            )
        return (
            "Não consegui elaborar uma resposta agora, mas aqui está um resumo "
            "dos seus dados:\n\n" + context_block
        )
