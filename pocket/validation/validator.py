"""
Two-Stage Receipt Validation

STAGE 1 - SCHEMA VALIDATION:
- Required field presence (amount, establishment, date)
- Extraction confidence
- Catches OCR errors and empty reads

STAGE 2 - SEMANTIC VALIDATION:
- Future or very old dates
- Implausible amounts
- Items that don't add up to the total
- Establishment name sanity
- Duplicate detection (needs storage)

Stage 2 only runs when stage 1 passes.

IMPORTANT: Validation NEVER silently fixes issues.
It reports them for the user to review.
"""

from datetime import date, timedelta
from decimal import Decimal
from typing import Optional

import structlog

from pocket.config import get_settings
from pocket.models import ExtractedReceipt, ValidationIssue, ValidationResult
from pocket.services.storage import ExpenseStorageInterface, StorageError

logger = structlog.get_logger()

LOW_CONFIDENCE = 0.5
OLD_RECEIPT_DAYS = 365 * 2
MIN_PLAUSIBLE_AMOUNT = Decimal("0.50")
ITEMS_TOLERANCE = Decimal("0.05")


class ReceiptValidator:
    """
    Validates extracted receipt data.

    Args:
        expense_storage: Used for duplicate checks. If None, they are skipped.
        max_amount: Amounts above this are flagged (defaults to settings)
        future_tolerance_days: Days ahead a receipt date may be (defaults to settings)
    """

    def __init__(
        self,
        expense_storage: Optional[ExpenseStorageInterface] = None,
        max_amount: Optional[Decimal] = None,
        future_tolerance_days: Optional[int] = None,
    ):
        self._storage = expense_storage
        if max_amount is None or future_tolerance_days is None:
            app = get_settings().app
            max_amount = max_amount or Decimal(str(app.max_receipt_amount))
            if future_tolerance_days is None:
                future_tolerance_days = app.future_date_tolerance_days
        self._max_amount = max_amount
        self._future_tolerance = future_tolerance_days

    def _validate_schema(
        self,
        extracted: ExtractedReceipt,
    ) -> tuple[bool, list[ValidationIssue]]:
        issues = []

        if extracted.amount is None:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="missing",
                message="O valor total não foi identificado",
                severity="error",
                suggested_fix="Garanta que o total esteja visível na foto",
            ))
        elif extracted.amount <= 0:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="invalid_value",
                message="O valor total precisa ser maior que zero",
                severity="error",
                suggested_fix="Confira se o valor foi lido corretamente",
            ))

        if not extracted.establishment_name:
            # The user can type it in during review
            issues.append(ValidationIssue(
                field="establishment_name",
                issue_type="missing",
                message="O nome do estabelecimento não foi identificado",
                severity="warning",
                suggested_fix="Informe o estabelecimento manualmente",
            ))

        if extracted.receipt_date is None:
            issues.append(ValidationIssue(
                field="receipt_date",
                issue_type="missing",
                message="A data da compra não foi identificada",
                severity="warning",
                suggested_fix="Informe a data manualmente",
            ))

        if extracted.confidence_score < LOW_CONFIDENCE:
            issues.append(ValidationIssue(
                field="confidence_score",
                issue_type="low_confidence",
                message=f"Confiança da leitura baixa ({extracted.confidence_score:.0%})",
                severity="warning",
                suggested_fix="Revise todos os campos com atenção",
            ))

        if (
            extracted.amount is None
            and not extracted.establishment_name
            and extracted.receipt_date is None
        ):
            issues.append(ValidationIssue(
                field="extraction",
                issue_type="empty",
                message="Nenhum dado útil foi extraído da imagem",
                severity="error",
                suggested_fix="Tente novamente com uma foto mais nítida",
            ))

        is_valid = not any(issue.severity == "error" for issue in issues)
        return is_valid, issues

    def _validate_semantic(
        self,
        extracted: ExtractedReceipt,
        today: date,
    ) -> tuple[bool, list[ValidationIssue]]:
        issues = []

        if extracted.receipt_date:
            if extracted.receipt_date > today + timedelta(days=self._future_tolerance):
                issues.append(ValidationIssue(
                    field="receipt_date",
                    issue_type="future_date",
                    message=f"A data ({extracted.receipt_date:%d/%m/%Y}) está no futuro",
                    severity="warning",
                    suggested_fix="Confira a data",
                ))
            elif extracted.receipt_date < today - timedelta(days=OLD_RECEIPT_DAYS):
                issues.append(ValidationIssue(
                    field="receipt_date",
                    issue_type="suspicious_date",
                    message=f"A data ({extracted.receipt_date:%d/%m/%Y}) parece antiga demais",
                    severity="warning",
                    suggested_fix="Confira se a data foi lida corretamente",
                ))

        amount = extracted.amount
        if amount is not None:
            if amount > self._max_amount:
                issues.append(ValidationIssue(
                    field="amount",
                    issue_type="suspicious_value",
                    message=f"O valor (R$ {amount:.2f}) parece alto demais para um recibo",
                    severity="warning",
                    suggested_fix="Confira o valor",
                ))
            elif amount < MIN_PLAUSIBLE_AMOUNT:
                issues.append(ValidationIssue(
                    field="amount",
                    issue_type="suspicious_value",
                    message=f"O valor (R$ {amount:.2f}) parece baixo demais",
                    severity="warning",
                    suggested_fix="Confira o valor",
                ))

            if extracted.items:
                items_total = extracted.items_total
                diff = abs(amount - items_total)
                # 5% for service charge / discounts, and never flag cents
                if diff > amount * ITEMS_TOLERANCE and diff > Decimal("1"):
                    issues.append(ValidationIssue(
                        field="items",
                        issue_type="inconsistent",
                        message=(
                            f"A soma dos itens (R$ {items_total:.2f}) não bate "
                            f"com o total (R$ {amount:.2f})"
                        ),
                        severity="warning",
                        suggested_fix="Confira os itens e o total",
                    ))

        name = extracted.establishment_name
        if name:
            alpha_count = sum(1 for c in name if c.isalpha())
            if alpha_count / len(name) < 0.3:
                issues.append(ValidationIssue(
                    field="establishment_name",
                    issue_type="suspicious_value",
                    message="O nome do estabelecimento parece estranho (muitos números ou símbolos)",
                    severity="warning",
                    suggested_fix="Confira o nome do estabelecimento",
                ))

        is_valid = not any(issue.severity == "error" for issue in issues)
        return is_valid, issues

    async def _check_duplicates(
        self,
        extracted: ExtractedReceipt,
        user_id: str,
    ) -> list[ValidationIssue]:
        if self._storage is None:
            return []
        if not extracted.establishment_name or not extracted.receipt_date or extracted.amount is None:
            return []

        try:
            exists = await self._storage.expense_exists(
                user_id=user_id,
                establishment_name=extracted.establishment_name,
                expense_date=extracted.receipt_date,
                amount=extracted.amount,
            )
        except StorageError as e:
            # A storage hiccup must not block the review
            logger.warning("duplicate_check_failed", error=str(e))
            return []

        if not exists:
            return []
        return [ValidationIssue(
            field="duplicate",
            issue_type="potential_duplicate",
            message=(
                f"Já existe uma despesa em {extracted.establishment_name} "
                f"de R$ {extracted.amount:.2f} em {extracted.receipt_date:%d/%m/%Y}"
            ),
            severity="warning",
            suggested_fix="Verifique se não é um lançamento repetido",
        )]

    async def validate(
        self,
        extracted: ExtractedReceipt,
        user_id: Optional[str] = None,
        today: Optional[date] = None,
    ) -> ValidationResult:
        """
        Run both validation stages.

        Args:
            extracted: The extracted receipt data
            user_id: Enables the duplicate check when given
            today: Reference date (defaults to today)
        """
        today = today or date.today()
        all_issues = []

        schema_valid, schema_issues = self._validate_schema(extracted)
        all_issues.extend(schema_issues)

        semantic_valid = False
        if schema_valid:
            semantic_valid, semantic_issues = self._validate_semantic(extracted, today)
            all_issues.extend(semantic_issues)
            if user_id:
                all_issues.extend(await self._check_duplicates(extracted, user_id))

        warnings = [issue.message for issue in all_issues if issue.severity == "warning"]

        can_proceed = extracted.amount is not None and not any(
            issue.severity == "error" for issue in all_issues
        )

        result = ValidationResult(
            extraction_id=extracted.extraction_id,
            schema_valid=schema_valid,
            semantic_valid=semantic_valid,
            is_valid=schema_valid and semantic_valid,
            can_proceed_with_review=can_proceed,
            issues=all_issues,
            warnings=warnings,
        )
        logger.info(
            "receipt_validated",
            extraction_id=str(extracted.extraction_id),
            is_valid=result.is_valid,
            issues=len(all_issues),
        )
        return result

    def get_user_friendly_summary(self, result: ValidationResult) -> str:
        """What we show in the review screen."""
        if result.is_valid and not result.warnings:
            return "✅ Tudo certo! Revise os dados abaixo."

        lines = []

        if not result.schema_valid:
            lines.append("❌ Algumas informações obrigatórias não foram lidas:")
            for issue in result.issues:
                if issue.severity == "error":
                    lines.append(f"   • {issue.message}")
                    if issue.suggested_fix:
                        lines.append(f"     💡 {issue.suggested_fix}")

        if result.warnings:
            lines.append("")
            lines.append("⚠️ Confira os pontos abaixo:")
            for warning in result.warnings:
                lines.append(f"   • {warning}")

        lines.append("")
        if result.can_proceed_with_review:
            lines.append("Você pode continuar, mas revise com cuidado.")
        else:
            lines.append("Corrija os problemas acima antes de continuar.")

        return "\n".join(lines)
