"""
Streamlit Frontend for Pocket

DESIGN PRINCIPLES:
1. Simple, clear interface in Portuguese
2. Explicit confirmation before a receipt becomes an expense
3. Clear error messages in simple language
4. Every number on screen comes from the user's own data

Run with: streamlit run app/main.py
"""

import asyncio
from datetime import date, timedelta
from decimal import Decimal

import streamlit as st

from pocket.audit import configure_logging, create_correlation_id
from pocket.config import get_settings, validate_all_settings
from pocket.finance import BillSplitError, balance_source_label, format_brl, parse_brl
from pocket.models import (
    CATEGORY_LABELS,
    Budget,
    BudgetPeriod,
    ConnectionOutcomeKind,
    ExpenseCategory,
    IncomeSource,
)
from pocket.orchestrator import AppComponents, create_app_components
from pocket.services.image import ImageUploadError
from pocket.services.ocr import ExtractionFailedError
from pocket.services.openfinance import PluggyError
from pocket.services.storage import StorageError

st.set_page_config(
    page_title="Pocket",
    page_icon="💸",
    layout="wide",
    initial_sidebar_state="expanded",
)

st.markdown("""
<style>
    .stButton>button {
        width: 100%;
        margin-top: 10px;
    }
    .big-number {
        font-size: 2.5em;
        font-weight: bold;
        color: #2c3e50;
    }
</style>
""", unsafe_allow_html=True)

CATEGORIES = list(ExpenseCategory)
PERIOD_LABELS = {
    BudgetPeriod.WEEKLY: "Semanal",
    BudgetPeriod.MONTHLY: "Mensal",
    BudgetPeriod.YEARLY: "Anual",
}


@st.cache_resource
def get_event_loop():
    # One loop for the session so cached HTTP clients keep working
    return asyncio.new_event_loop()


def run_async(coro):
    """Helper to run async functions in Streamlit."""
    return get_event_loop().run_until_complete(coro)


@st.cache_resource
def get_components() -> AppComponents:
    """Get or create application components (cached)."""
    configure_logging(debug=get_settings().app.debug_mode)
    return create_app_components(use_storage=True)


def category_label(category: ExpenseCategory) -> str:
    return CATEGORY_LABELS.get(category, category.value)


def main():
    components = get_components()

    st.sidebar.title("💸 Pocket")
    user_id = st.sidebar.text_input("Usuário", value="default")
    st.sidebar.markdown("---")

    page = st.sidebar.radio(
        "Navegar:",
        [
            "🧾 Recibos",
            "💰 Saldo",
            "🎯 Orçamentos",
            "➗ Dividir conta",
            "🏦 Bancos",
            "💬 Assistente",
            "⚙️ Configurações",
        ],
        index=0,
    )

    if not components.persistent:
        st.sidebar.warning("Dados em memória: nada será salvo ao fechar o app.")

    if page == "🧾 Recibos":
        render_receipts_page(components, user_id)
    elif page == "💰 Saldo":
        render_balance_page(components, user_id)
    elif page == "🎯 Orçamentos":
        render_budgets_page(components, user_id)
    elif page == "➗ Dividir conta":
        render_split_page(components)
    elif page == "🏦 Bancos":
        render_banks_page(components, user_id)
    elif page == "💬 Assistente":
        render_assistant_page(components, user_id)
    elif page == "⚙️ Configurações":
        render_settings_page()


# =============================================================================
# RECEIPTS
# =============================================================================

def render_receipts_page(components: AppComponents, user_id: str):
    st.title("🧾 Recibos")
    flow = components.receipts

    if "receipt_state" not in st.session_state:
        st.session_state.receipt_state = "idle"  # idle, processing, reviewing, saved

    uploaded_file = st.file_uploader(
        "Foto do recibo",
        type=["jpg", "jpeg", "png", "webp"],
        help="Uma foto nítida e bem iluminada",
    )

    if uploaded_file and st.session_state.receipt_state == "idle":
        if st.button("🔍 Ler recibo", type="primary"):
            st.session_state.correlation_id = create_correlation_id()
            st.session_state.receipt_state = "processing"
            st.rerun()

    if st.session_state.receipt_state == "processing" and uploaded_file:
        correlation_id = st.session_state.correlation_id
        with st.spinner("Lendo o recibo..."):
            try:
                url, message = run_async(flow.upload_receipt(
                    user_id, uploaded_file.read(), uploaded_file.name, correlation_id
                ))
                if url is None:
                    st.session_state.receipt_state = "idle"
                    st.error(message)
                    st.stop()

                extracted, can_proceed, message = run_async(flow.extract_receipt(url, correlation_id))
                if not can_proceed:
                    st.session_state.receipt_state = "idle"
                    st.error(message)
                    st.stop()

                validation, summary = run_async(flow.validate_extraction(extracted, user_id, correlation_id))
                suggestion = run_async(flow.suggest_category(extracted, user_id, correlation_id))

                st.session_state.extracted = extracted
                st.session_state.validation = validation
                st.session_state.validation_summary = summary
                st.session_state.suggestion = suggestion
                st.session_state.receipt_state = "reviewing"
                st.rerun()
            except (ImageUploadError, ExtractionFailedError) as e:
                st.session_state.receipt_state = "idle"
                st.error(f"Erro ao processar o recibo: {e}")

    if st.session_state.receipt_state == "reviewing":
        render_receipt_review(flow, user_id)

    if st.session_state.receipt_state == "saved":
        expense = st.session_state.saved_expense
        st.success(
            f"✅ Despesa salva: {expense.establishment_name} - "
            f"{format_brl(expense.amount)} ({category_label(expense.category)})"
        )
        if st.button("🧾 Ler outro recibo"):
            st.session_state.receipt_state = "idle"
            st.rerun()

    st.markdown("---")
    render_manual_expense_form(flow, user_id)


def render_receipt_review(flow, user_id: str):
    extracted = st.session_state.extracted
    validation = st.session_state.validation
    suggestion = st.session_state.suggestion

    st.subheader("📋 Confira os dados")
    if validation.is_valid and not validation.warnings:
        st.success(st.session_state.validation_summary)
    else:
        st.warning(st.session_state.validation_summary)

    if extracted.image_url:
        with st.expander("📷 Ver foto"):
            st.image(extracted.image_url, width=400)

    col1, col2 = st.columns(2)
    with col1:
        establishment = st.text_input("Estabelecimento *", value=extracted.establishment_name or "")
        category = st.selectbox(
            "Categoria *",
            options=CATEGORIES,
            index=CATEGORIES.index(suggestion.category),
            format_func=category_label,
        )
        subcategory = st.text_input("Subcategoria", value=suggestion.subcategory)
    with col2:
        amount = st.number_input(
            "Valor (R$) *",
            value=float(extracted.amount or 0),
            min_value=0.0,
            step=0.01,
            format="%.2f",
        )
        expense_date = st.date_input("Data *", value=extracted.receipt_date or date.today())
        is_fixed_cost = st.checkbox("Custo fixo", value=suggestion.is_fixed_cost)

    if extracted.items:
        with st.expander(f"🛒 Itens ({len(extracted.items)})"):
            for item in extracted.items:
                st.markdown(f"- {item.name} × {item.quantity}: {format_brl(item.price)}")

    notes = st.text_area("Observações")
    st.caption(f"Confiança da leitura: {extracted.confidence_score:.0%}")

    col1, col2 = st.columns(2)
    with col1:
        if st.button("✅ Confirmar e salvar", type="primary"):
            if not establishment:
                st.error("Informe o estabelecimento")
            elif amount <= 0:
                st.error("Informe um valor válido")
            else:
                try:
                    st.session_state.saved_expense = run_async(flow.confirm_and_save(
                        user_id=user_id,
                        extracted=extracted,
                        establishment_name=establishment,
                        amount=Decimal(str(amount)),
                        expense_date=expense_date,
                        category=category,
                        subcategory=subcategory or None,
                        is_fixed_cost=is_fixed_cost,
                        notes=notes or None,
                        suggestion=suggestion,
                        correlation_id=st.session_state.correlation_id,
                    ))
                    st.session_state.receipt_state = "saved"
                    st.rerun()
                except StorageError as e:
                    st.error(f"Falha ao salvar: {e}")
    with col2:
        if st.button("❌ Descartar"):
            run_async(flow.reject_extraction(
                user_id, extracted, "Descartado na revisão", st.session_state.correlation_id
            ))
            st.session_state.receipt_state = "idle"
            st.rerun()


def render_manual_expense_form(flow, user_id: str):
    st.subheader("✍️ Lançar despesa manualmente")
    with st.form("manual_expense"):
        establishment = st.text_input("Estabelecimento")
        amount_text = st.text_input("Valor (R$)", placeholder="45,90")
        expense_date = st.date_input("Data", value=date.today())
        auto = st.checkbox("Categorizar automaticamente", value=True)
        category = st.selectbox("Categoria", options=CATEGORIES, format_func=category_label)
        submitted = st.form_submit_button("Salvar")

    if submitted:
        amount = parse_brl(amount_text)
        if not establishment or amount <= 0:
            st.error("Informe estabelecimento e valor")
            return
        try:
            expense = run_async(flow.add_manual_expense(
                user_id,
                establishment,
                amount,
                expense_date,
                category=None if auto else category,
            ))
            st.success(f"Salvo em {category_label(expense.category)} - {format_brl(expense.amount)}")
        except StorageError as e:
            st.error(f"Falha ao salvar: {e}")


# =============================================================================
# BALANCE
# =============================================================================

def render_balance_page(components: AppComponents, user_id: str):
    st.title("💰 Saldo do mês")

    context = run_async(components.insights.overview(user_id))

    if context.balance is None:
        st.info("Cadastre uma fonte de renda abaixo para ver o saldo restante.")
    else:
        balance = context.balance
        st.markdown(f'<div class="big-number">{format_brl(balance.remaining_balance)}</div>', unsafe_allow_html=True)
        st.caption(balance_source_label(balance.source))
        col1, col2, col3 = st.columns(3)
        col1.metric("Renda", format_brl(balance.total_income))
        col2.metric("Gastos do mês", format_brl(balance.total_expenses))
        col3.metric(
            "Saldo bancário",
            format_brl(balance.bank_balance) if balance.bank_balance is not None else "—",
        )

    if context.category_breakdown:
        st.subheader("Por categoria")
        for category, total in context.top_categories(limit=len(context.category_breakdown)):
            st.markdown(f"- **{category_label(category)}**: {format_brl(total)}")

    if context.recent_expenses:
        st.subheader("Últimas despesas")
        for expense in context.recent_expenses:
            st.markdown(
                f"- {expense.expense_date:%d/%m} · {expense.establishment_name} · {format_brl(expense.amount)}"
            )

    st.markdown("---")
    render_income_sources(components, user_id)

    st.markdown("---")
    st.subheader("🔎 Padrões de gasto")
    if st.button("Analisar meus gastos"):
        result = run_async(components.insights.detect_patterns(user_id))
        if not result.patterns:
            st.info("Ainda não há despesas suficientes para encontrar padrões.")
        for pattern in result.patterns:
            st.markdown(
                f"- **{pattern.pattern_type.value}** · {pattern.pattern_key} "
                f"(confiança {pattern.confidence:.0%})"
            )


def render_income_sources(components: AppComponents, user_id: str):
    st.subheader("Fontes de renda")
    storage = components.profile_storage
    sources = run_async(storage.list_income_sources(user_id))
    accounts = run_async(components.banking_storage.list_accounts(user_id))
    account_names = {a.account_id: a.name for a in accounts}

    for source in sources:
        linked = account_names.get(source.linked_account_id, "não vinculada")
        col1, col2 = st.columns([4, 1])
        col1.markdown(f"**{source.name}** · R$ {source.salary} · conta: {linked}")
        if col2.button("Remover", key=f"remove_income_{source.id}"):
            run_async(storage.delete_income_source(source.id))
            st.rerun()

    with st.form("income_source"):
        name = st.text_input("Nome", value="Salário")
        salary = st.text_input("Valor", placeholder="5.000,00")
        payment_day = st.number_input("Dia do pagamento", min_value=1, max_value=31, value=5)
        account_id = st.selectbox(
            "Conta bancária vinculada",
            options=[None] + list(account_names),
            format_func=lambda a: "Nenhuma" if a is None else account_names[a],
        )
        if st.form_submit_button("Adicionar renda"):
            run_async(storage.save_income_source(IncomeSource(
                user_id=user_id,
                name=name,
                salary=salary or "0",
                payment_day=int(payment_day),
                linked_account_id=account_id,
            )))
            st.rerun()


# =============================================================================
# BUDGETS
# =============================================================================

def render_budgets_page(components: AppComponents, user_id: str):
    st.title("🎯 Orçamentos")

    context = run_async(components.insights.overview(user_id))
    for status in context.budgets:
        budget = status.budget
        st.markdown(
            f"**{category_label(budget.category)}** ({PERIOD_LABELS[budget.period]}) · "
            f"{format_brl(status.spent)} de {format_brl(budget.amount)}"
        )
        st.progress(min(float(status.percentage) / 100, 1.0))
        if status.over_budget:
            st.error(f"Estourado em {format_brl(-status.remaining)}")
        elif status.near_limit:
            st.warning(f"Atenção: {status.percentage}% usado")
        if st.button("Remover", key=f"remove_budget_{budget.id}"):
            run_async(components.budget_storage.delete_budget(budget.id))
            st.rerun()

    st.markdown("---")
    with st.form("budget"):
        category = st.selectbox("Categoria", options=CATEGORIES, format_func=category_label)
        amount_text = st.text_input("Limite (R$)", placeholder="800,00")
        period = st.selectbox("Período", options=list(BudgetPeriod), index=1, format_func=PERIOD_LABELS.get)
        notify = st.checkbox("Avisar quando estiver perto do limite", value=True)
        if st.form_submit_button("Criar orçamento"):
            amount = parse_brl(amount_text)
            if amount <= 0:
                st.error("Informe um limite válido")
            else:
                run_async(components.budget_storage.save_budget(Budget(
                    user_id=user_id,
                    category=category,
                    amount=amount,
                    period=period,
                    notifications_enabled=notify,
                )))
                st.rerun()


# =============================================================================
# BILL SPLIT
# =============================================================================

def render_split_page(components: AppComponents):
    st.title("➗ Dividir a conta")

    total_text = st.text_input("Total da conta (R$)", placeholder="150,00")
    people = st.number_input("Pessoas", min_value=1, value=2, step=1)
    service = st.checkbox("Incluir taxa de serviço (10%)")

    if st.button("Calcular", type="primary"):
        try:
            split = components.insights.split_bill(str(parse_brl(total_text)), int(people), service)
        except BillSplitError as e:
            st.error(str(e))
            return

        st.markdown(f'<div class="big-number">{format_brl(split.per_person)} por pessoa</div>', unsafe_allow_html=True)
        if split.service_charge:
            st.caption(f"Taxa de serviço: {format_brl(split.service_charge)}")
        st.caption(f"Total final: {format_brl(split.final_total)}")
        if len(set(split.shares)) > 1:
            st.markdown("Para fechar a conta certinho:")
            for i, share in enumerate(split.shares, start=1):
                st.markdown(f"- Pessoa {i}: {format_brl(share)}")


# =============================================================================
# BANKS
# =============================================================================

def render_banks_page(components: AppComponents, user_id: str):
    st.title("🏦 Bancos")
    banks = components.banks
    if banks is None:
        st.info("Open Finance não configurado. Defina PLUGGY_CLIENT_ID e PLUGGY_CLIENT_SECRET.")
        return

    params = st.query_params
    if "itemId" in params or "error" in params:
        outcome = run_async(banks.handle_oauth_callback(user_id, dict(params)))
        st.query_params.clear()
        show_outcome(outcome)

    items = run_async(components.banking_storage.list_items(user_id))
    for item in items:
        with st.expander(f"{item.connector_name or item.item_id} · {item.status}"):
            accounts = run_async(components.banking_storage.list_accounts(user_id, item.item_id))
            for account in accounts:
                balance = format_brl(account.balance) if account.balance is not None else "—"
                st.markdown(f"- **{account.name}** ({account.type or 'conta'}): {balance}")
                if st.button("Importar transações (90 dias)", key=f"sync_{account.account_id}"):
                    with st.spinner("Importando..."):
                        result = run_async(banks.sync_transactions(
                            user_id, account.account_id, date.today() - timedelta(days=90), date.today()
                        ))
                    st.success(f"{result.saved} novas, {result.skipped} já importadas")
            col1, col2 = st.columns(2)
            if col1.button("Atualizar", key=f"refresh_{item.item_id}"):
                run_async(banks.sync_item(user_id, item.item_id))
                st.rerun()
            if col2.button("Desconectar", key=f"delete_{item.item_id}"):
                run_async(banks.disconnect_item(user_id, item.item_id))
                st.rerun()

    pending = st.session_state.get("mfa_item_id")
    if pending:
        st.subheader("🔐 Código de verificação")
        token = st.text_input(st.session_state.get("mfa_label") or "Código enviado pelo banco")
        if st.button("Enviar código") and token:
            outcome = run_async(banks.submit_mfa(
                user_id, pending, {st.session_state.get("mfa_name") or "token": token}
            ))
            st.session_state.mfa_item_id = None
            show_outcome(outcome)

    st.markdown("---")
    st.subheader("Conectar novo banco")
    with st.form("connect_bank"):
        connector_id = st.number_input("ID do conector Pluggy", min_value=0, step=1)
        document = st.text_input("CPF / usuário")
        password = st.text_input("Senha", type="password")
        submitted = st.form_submit_button("Conectar")

    if submitted:
        credentials = {"user": document}
        if password:
            credentials["password"] = password
        with st.spinner("Conectando ao banco..."):
            try:
                outcome = run_async(banks.connect(user_id, int(connector_id), credentials))
            except PluggyError as e:
                st.error(f"Falha ao conectar: {e}")
                return
        show_outcome(outcome)


def show_outcome(outcome):
    if outcome.kind == ConnectionOutcomeKind.OAUTH_REDIRECT:
        st.info("Autorize o acesso no site do seu banco:")
        st.link_button("Abrir banco", outcome.oauth_url)
    elif outcome.kind == ConnectionOutcomeKind.MFA_REQUIRED:
        st.session_state.mfa_item_id = outcome.item_id
        st.session_state.mfa_name = outcome.parameter.name if outcome.parameter else None
        st.session_state.mfa_label = outcome.parameter.label if outcome.parameter else None
        st.warning("O banco pediu um código de verificação.")
        st.rerun()
    elif outcome.succeeded:
        st.success(outcome.message)
    else:
        st.error(outcome.message or "Não foi possível conectar o banco")


# =============================================================================
# ASSISTANT
# =============================================================================

def render_assistant_page(components: AppComponents, user_id: str):
    st.title("💬 Assistente")

    conversation = st.session_state.get("conversation")
    if conversation is not None and conversation.user_id != user_id:
        conversation = None

    if conversation is not None:
        for message in conversation.messages:
            with st.chat_message(message.role.value):
                st.markdown(message.content)

    question = st.chat_input("Pergunte sobre seus gastos...")
    if question:
        with st.spinner("Pensando..."):
            conversation, reply = run_async(components.assistant.ask(user_id, question, conversation))
        st.session_state.conversation = conversation
        st.rerun()

    if conversation is not None and st.button("Nova conversa"):
        st.session_state.conversation = None
        st.rerun()


# =============================================================================
# SETTINGS
# =============================================================================

def render_settings_page():
    st.title("⚙️ Configurações")
    st.markdown("### Serviços")

    status = validate_all_settings()
    services = [
        ("Cloudinary (fotos dos recibos)", "cloudinary"),
        ("Mindee (OCR)", "mindee"),
        ("Google Sheets (armazenamento)", "google_sheets"),
        ("Gemini (IA)", "gemini"),
        ("Pluggy (Open Finance)", "pluggy"),
    ]
    for name, key in services:
        if status.get(key, False):
            st.success(f"✅ {name} - Configurado")
        else:
            st.error(f"❌ {name} - {status.get(f'{key}_error', 'Não configurado')}")

    st.markdown("---")
    st.markdown(
        "Crie um arquivo `.env` com as chaves de API. "
        "Veja `.env.example` para as variáveis necessárias."
    )


if __name__ == "__main__":
    main()
