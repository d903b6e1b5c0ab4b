"""
Main Orchestrator for Pocket

This module ties together all the components and defines the
end-to-end flows for:
1. Receipt capture (photo → upload → OCR → validate → categorize → confirm → save)
2. Insights (balance, budgets, bill split, spending patterns)
3. Assistant (question → financial context → answer)

DESIGN DECISION: The orchestrator enforces the boundaries:
- No receipt becomes an expense without the user's confirmation
- The assistant only sees the data we gather for it
- Every step is audited
"""

from datetime import date, datetime
from decimal import Decimal
from typing import NamedTuple, Optional, Union
from uuid import UUID, uuid4

import structlog

from pocket.agents import AssistantReply, ExpenseCategorizer, FinanceAssistant
from pocket.audit import AuditLogger, create_correlation_id
from pocket.config import get_settings, validate_all_settings
from pocket.finance import BudgetTracker, PatternDetector, split_bill
from pocket.finance.categories import categorize_by_keywords
from pocket.models import (
    AuditEventBuilder,
    BillSplit,
    BudgetStatus,
    CategorizationConfidence,
    CategorizationResult,
    ChatRole,
    Conversation,
    Expense,
    ExpenseCategory,
    ExpenseSource,
    ExtractedReceipt,
    PatternDetectionResult,
    ValidationResult,
)
from pocket.queries import FinancialContext, FinancialContextBuilder
from pocket.services.image import CloudinaryImageService, ImageUploadError, InvalidImageError
from pocket.services.ocr import ExtractionFailedError, MindeeReceiptService, ReceiptRejectedError
from pocket.services.openfinance import BankConnectionFlow, PluggyClient
from pocket.services.storage import (
    BankingStorageInterface,
    BudgetStorageInterface,
    ExpenseStorageInterface,
    GoogleSheetsAuditStorage,
    GoogleSheetsBankingStorage,
    GoogleSheetsBudgetStorage,
    GoogleSheetsClient,
    GoogleSheetsExpenseStorage,
    GoogleSheetsInsightsStorage,
    GoogleSheetsProfileStorage,
    InMemoryAuditStorage,
    InMemoryBankingStorage,
    InMemoryBudgetStorage,
    InMemoryExpenseStorage,
    InMemoryInsightsStorage,
    InMemoryProfileStorage,
    InsightsStorageInterface,
    ProfileStorageInterface,
    StorageError,
)
from pocket.validation import ReceiptValidator

logger = structlog.get_logger()


class ReceiptCaptureFlow:
    """
    Orchestrates receipt capture.

    Flow:
    1. Upload → pre-check, resize and host the photo
    2. Extract → Mindee OCR, reject unreadable receipts
    3. Validate → Two-stage validation
    4. Suggest → Category suggestion
    5. Review → Present to user (PAUSE - require confirmation)
    6. Confirm → User explicitly approves (possibly after editing)
    7. Save → Persist the expense

    Human confirmation (step 6) is MANDATORY.
    The system NEVER auto-saves a receipt.
    """

    def __init__(
        self,
        image_service: Optional[CloudinaryImageService] = None,
        ocr_service: Optional[MindeeReceiptService] = None,
        validator: Optional[ReceiptValidator] = None,
        categorizer: Optional[ExpenseCategorizer] = None,
        expense_storage: Optional[ExpenseStorageInterface] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._image_service = image_service
        self._ocr_service = ocr_service
        self._expense_storage = expense_storage
        self._validator = validator or ReceiptValidator(expense_storage)
        self._categorizer = categorizer
        self._audit_logger = audit_logger or AuditLogger()

    async def upload_receipt(
        self,
        user_id: str,
        image_bytes: bytes,
        filename: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> tuple[Optional[str], str]:
        """
        Upload a receipt photo.

        Returns:
            (image_url, message). image_url is None when the photo was
            refused by the pre-check; the message says why.
        """
        correlation_id = correlation_id or create_correlation_id()
        if self._image_service is None:
            raise ImageUploadError("Serviço de imagens não configurado")

        try:
            url = await self._image_service.upload_receipt(image_bytes, uuid4(), filename)
        except InvalidImageError as e:
            await self._audit_logger.log(AuditEventBuilder.receipt_rejected(str(e), correlation_id))
            return None, "❌ Foto recusada: " + "; ".join(e.issues)
        except ImageUploadError as e:
            await self._audit_logger.log_external_service_error("cloudinary", str(e), correlation_id)
            raise

        await self._audit_logger.log(AuditEventBuilder.receipt_uploaded(user_id, url, correlation_id))
        return url, "✅ Foto enviada"

    async def extract_receipt(
        self,
        image_url: str,
        correlation_id: Optional[UUID] = None,
    ) -> tuple[Optional[ExtractedReceipt], bool, str]:
        """
        Read the receipt with OCR.

        Returns:
            (extracted, can_proceed, message). extracted is None when the
            image was rejected as a receipt.
        """
        correlation_id = correlation_id or create_correlation_id()
        if self._ocr_service is None:
            raise ExtractionFailedError("Serviço de OCR não configurado")

        try:
            extracted = await self._ocr_service.extract_receipt(image_url)
        except ReceiptRejectedError as e:
            await self._audit_logger.log(AuditEventBuilder.receipt_rejected(str(e), correlation_id))
            return None, False, str(e)
        except ExtractionFailedError as e:
            await self._audit_logger.log_external_service_error("mindee", str(e), correlation_id)
            raise

        can_proceed, message = self._ocr_service.should_proceed_with_extraction(extracted)
        await self._audit_logger.log(AuditEventBuilder.ocr_completed(
            extracted.extraction_id, extracted.confidence_score, correlation_id
        ))
        return extracted, can_proceed, message

    async def validate_extraction(
        self,
        extracted: ExtractedReceipt,
        user_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> tuple[ValidationResult, str]:
        """
        Validate extracted receipt data.

        Returns:
            (validation_result, user_message)
        """
        correlation_id = correlation_id or create_correlation_id()

        result = await self._validator.validate(extracted, user_id=user_id)
        message = self._validator.get_user_friendly_summary(result)

        if not result.is_valid:
            issues = [
                {"field": i.field, "type": i.issue_type, "message": i.message}
                for i in result.issues
            ]
            stage = "schema" if not result.schema_valid else "semantic"
            await self._audit_logger.log(AuditEventBuilder.validation_failed(
                extracted.extraction_id, stage, issues, correlation_id
            ))

        return result, message

    async def suggest_category(
        self,
        extracted: ExtractedReceipt,
        user_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> CategorizationResult:
        """Category suggestion shown on the review screen."""
        name = extracted.establishment_name or ""
        if self._categorizer is not None and name:
            return await self._categorizer.categorize(
                name,
                amount=extracted.amount,
                items=[item.name for item in extracted.items],
                user_id=user_id,
                correlation_id=correlation_id,
            )

        if extracted.suggested_category is not None:
            return CategorizationResult(
                category=extracted.suggested_category,
                confidence=CategorizationConfidence.MEDIUM,
                source="default",
                reasoning="Categoria sugerida pela leitura do recibo",
            )
        return categorize_by_keywords(name)

    async def confirm_and_save(
        self,
        user_id: str,
        extracted: ExtractedReceipt,
        establishment_name: str,
        amount: Decimal,
        expense_date: date,
        category: ExpenseCategory,
        subcategory: Optional[str] = None,
        is_fixed_cost: bool = False,
        notes: Optional[str] = None,
        suggestion: Optional[CategorizationResult] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Expense:
        """
        Confirm and save the receipt as an expense.

        CRITICAL: This is called ONLY after explicit user confirmation.

        When the user picked a different category than the suggestion, the
        choice is remembered as a merchant alias.
        """
        correlation_id = correlation_id or create_correlation_id()

        expense = Expense(
            user_id=user_id,
            establishment_name=establishment_name,
            amount=amount,
            expense_date=expense_date,
            category=category,
            subcategory=subcategory,
            is_fixed_cost=is_fixed_cost,
            items=extracted.items,
            notes=notes,
            image_url=extracted.image_url,
            source=ExpenseSource.RECEIPT,
            extraction_id=extracted.extraction_id,
        )

        await self._audit_logger.log(AuditEventBuilder.user_confirmed(
            user_id, expense.id, extracted.extraction_id, correlation_id
        ))

        await self._save(expense, correlation_id)

        if suggestion is not None and suggestion.category != category and self._categorizer is not None:
            try:
                await self._categorizer.learn_alias(
                    user_id,
                    raw_name=extracted.establishment_name or establishment_name,
                    establishment_name=establishment_name,
                    category=category,
                    subcategory=subcategory,
                )
            except StorageError as e:
                logger.warning("alias_not_learned", user_id=user_id, error=str(e))

        return expense

    async def add_manual_expense(
        self,
        user_id: str,
        establishment_name: str,
        amount: Decimal,
        expense_date: date,
        category: Optional[ExpenseCategory] = None,
        subcategory: Optional[str] = None,
        notes: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Expense:
        """Record an expense typed in by the user, categorizing it when no category is given."""
        correlation_id = correlation_id or create_correlation_id()
        is_fixed_cost = False

        if category is None:
            if self._categorizer is not None:
                suggestion = await self._categorizer.categorize(
                    establishment_name, amount=amount, user_id=user_id, correlation_id=correlation_id
                )
            else:
                suggestion = categorize_by_keywords(establishment_name)
            category = suggestion.category
            subcategory = subcategory or suggestion.subcategory
            is_fixed_cost = suggestion.is_fixed_cost

        expense = Expense(
            user_id=user_id,
            establishment_name=establishment_name,
            amount=amount,
            expense_date=expense_date,
            category=category,
            subcategory=subcategory,
            is_fixed_cost=is_fixed_cost,
            notes=notes,
            source=ExpenseSource.MANUAL,
        )
        await self._save(expense, correlation_id)
        return expense

    async def _save(self, expense: Expense, correlation_id: UUID) -> None:
        if self._expense_storage is None:
            return
        await self._expense_storage.save_expense(expense)
        await self._audit_logger.log(AuditEventBuilder.expense_saved(
            expense.user_id,
            expense.id,
            expense.establishment_name,
            str(expense.amount),
            correlation_id,
        ))

    async def reject_extraction(
        self,
        user_id: str,
        extracted: ExtractedReceipt,
        reason: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Record that the user discarded the extraction after reviewing it."""
        correlation_id = correlation_id or create_correlation_id()
        await self._audit_logger.log(AuditEventBuilder.user_rejected(
            user_id, extracted.extraction_id, reason, correlation_id
        ))


class InsightsFlow:
    """
    Read-side numbers for the dashboard: balance, budgets, bill split and
    spending patterns.
    """

    def __init__(
        self,
        context_builder: FinancialContextBuilder,
        pattern_detector: Optional[PatternDetector] = None,
        budget_tracker: Optional[BudgetTracker] = None,
        service_charge_rate: Decimal = Decimal("0.10"),
    ):
        self._context_builder = context_builder
        self._pattern_detector = pattern_detector
        self._tracker = budget_tracker or BudgetTracker()
        self._service_charge_rate = service_charge_rate

    async def overview(self, user_id: str, now: Optional[datetime] = None) -> FinancialContext:
        """Current month totals, balance and budget statuses."""
        return await self._context_builder.build(user_id, now)

    async def budget_alerts(self, user_id: str, now: Optional[datetime] = None) -> list[BudgetStatus]:
        context = await self._context_builder.build(user_id, now)
        return self._tracker.alerts(context.budgets)

    def split_bill(
        self,
        total: Union[Decimal, str],
        people: int,
        include_service_charge: bool = False,
    ) -> BillSplit:
        return split_bill(total, people, include_service_charge, self._service_charge_rate)

    async def detect_patterns(self, user_id: str, today: Optional[date] = None) -> PatternDetectionResult:
        if self._pattern_detector is None:
            return PatternDetectionResult(user_id=user_id, message="Pattern detection not configured")
        return await self._pattern_detector.run(user_id, today)


class AssistantFlow:
    """
    Answers questions about the user's money.

    Every answer is built from a fresh FinancialContext; the conversation
    is stored after each exchange when insights storage is available.
    """

    def __init__(
        self,
        context_builder: FinancialContextBuilder,
        assistant: FinanceAssistant,
        insights_storage: Optional[InsightsStorageInterface] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._context_builder = context_builder
        self._assistant = assistant
        self._insights = insights_storage
        self._audit_logger = audit_logger or AuditLogger()

    async def ask(
        self,
        user_id: str,
        question: str,
        conversation: Optional[Conversation] = None,
        correlation_id: Optional[UUID] = None,
    ) -> tuple[Conversation, AssistantReply]:
        correlation_id = correlation_id or create_correlation_id()
        conversation = conversation or Conversation(user_id=user_id)
        conversation.add_message(ChatRole.USER, question)

        context = await self._context_builder.build(user_id)
        reply = await self._assistant.reply(conversation.messages, context)
        conversation.add_message(ChatRole.ASSISTANT, reply.text)

        if self._insights is not None:
            try:
                await self._insights.save_conversation(conversation)
            except StorageError as e:
                logger.warning("conversation_not_saved", conversation_id=str(conversation.id), error=str(e))

        await self._audit_logger.log(AuditEventBuilder.assistant_answered(
            user_id, conversation.id, reply.used_fallback, correlation_id
        ))
        return conversation, reply


class AppComponents(NamedTuple):
    receipts: ReceiptCaptureFlow
    insights: InsightsFlow
    assistant: AssistantFlow
    banks: Optional[BankConnectionFlow]
    expense_storage: ExpenseStorageInterface
    profile_storage: ProfileStorageInterface
    budget_storage: BudgetStorageInterface
    banking_storage: BankingStorageInterface
    insights_storage: InsightsStorageInterface
    persistent: bool


def _sheets_storages(client: GoogleSheetsClient) -> tuple:
    return (
        GoogleSheetsExpenseStorage(client),
        GoogleSheetsProfileStorage(client),
        GoogleSheetsBudgetStorage(client),
        GoogleSheetsBankingStorage(client),
        GoogleSheetsInsightsStorage(client),
        GoogleSheetsAuditStorage(client),
    )


def _memory_storages() -> tuple:
    return (
        InMemoryExpenseStorage(),
        InMemoryProfileStorage(),
        InMemoryBudgetStorage(),
        InMemoryBankingStorage(),
        InMemoryInsightsStorage(),
        InMemoryAuditStorage(),
    )


def create_app_components(
    use_storage: bool = True,
    use_llm: Optional[bool] = None,
) -> AppComponents:
    """
    Factory function to create all application components.

    Args:
        use_storage: Whether to use Google Sheets. Falls back to in-memory
            storage when False or when Sheets is not configured/reachable.
        use_llm: Whether to call Gemini. Defaults to whether it is configured.

    Services that are not configured are left out: receipt upload/OCR
    raise when used, and `banks` is None.
    """
    status = validate_all_settings()
    app_settings = get_settings().app

    persistent = False
    storages = None
    if use_storage and status.get("google_sheets"):
        try:
            client = GoogleSheetsClient()
            client.get_spreadsheet()
            storages = _sheets_storages(client)
            persistent = True
        except StorageError as e:
            logger.warning("storage_not_configured", error=str(e))
    if storages is None:
        storages = _memory_storages()

    expense_storage, profile_storage, budget_storage, banking_storage, insights_storage, audit_storage = storages
    audit_logger = AuditLogger(audit_storage)

    if use_llm is None:
        use_llm = bool(status.get("gemini"))

    categorizer = ExpenseCategorizer(
        insights_storage=insights_storage,
        audit_logger=audit_logger,
        use_llm=use_llm,
        alias_min_confidence=app_settings.alias_min_confidence,
    )

    receipts = ReceiptCaptureFlow(
        image_service=CloudinaryImageService() if status.get("cloudinary") else None,
        ocr_service=MindeeReceiptService() if status.get("mindee") else None,
        validator=ReceiptValidator(expense_storage),
        categorizer=categorizer,
        expense_storage=expense_storage,
        audit_logger=audit_logger,
    )

    tracker = BudgetTracker(app_settings.budget_alert_threshold)
    context_builder = FinancialContextBuilder(
        expense_storage=expense_storage,
        profile_storage=profile_storage,
        banking_storage=banking_storage,
        budget_storage=budget_storage,
        insights_storage=insights_storage,
        timezone=app_settings.timezone,
        budget_tracker=tracker,
    )

    insights = InsightsFlow(
        context_builder,
        pattern_detector=PatternDetector(
            expense_storage,
            insights_storage,
            audit_logger,
            lookback_months=app_settings.pattern_lookback_months,
            min_expenses=app_settings.pattern_min_expenses,
            timezone=app_settings.timezone,
        ),
        budget_tracker=tracker,
        service_charge_rate=app_settings.service_charge_rate,
    )

    assistant = AssistantFlow(
        context_builder,
        FinanceAssistant(use_llm=use_llm),
        insights_storage=insights_storage,
        audit_logger=audit_logger,
    )

    banks = None
    if status.get("pluggy"):
        banks = BankConnectionFlow(
            PluggyClient(),
            banking_storage,
            categorizer=categorizer,
            audit_logger=audit_logger,
            poll_max_attempts=app_settings.bank_poll_max_attempts,
            poll_interval_seconds=app_settings.bank_poll_interval_seconds,
        )

    logger.info(
        "app_components_created",
        persistent=persistent,
        use_llm=use_llm,
        banks=banks is not None,
    )
    return AppComponents(
        receipts=receipts,
        insights=insights,
        assistant=assistant,
        banks=banks,
        expense_storage=expense_storage,
        profile_storage=profile_storage,
        budget_storage=budget_storage,
        banking_storage=banking_storage,
        insights_storage=insights_storage,
        persistent=persistent,
    )
