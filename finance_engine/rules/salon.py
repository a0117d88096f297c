"""
HERA Finance Engine - Salon Posting Rules
"""

INDUSTRY = "salon"

DEFAULT_ACCOUNTS = {
    "card_clearing": "1110",
    "service_revenue": "4100",
    "product_revenue": "4200",
    "commission_expense": "6150",
}

POSTING_RULES = [
    {
        "smart_code": "HERA.SALON.SALE.SERVICE.v1",
        "description": "Salon service sale: payment against service revenue and VAT",
        "validations": {
            "required_header": ["organization_id", "origin_txn_id", "currency"],
            "required_lines": ["role"],
            "fiscal_check": "open_period",
            "amount_limits": {"approval_threshold": "10000"},
        },
        "posting_recipe": {
            "lines": [
                {"derive": "DR Payment", "from": "entity.gl_account"},
                {"derive": "CR Revenue", "from": "entity.gl_account"},
                {"derive": "CR Tax", "from": "entity.gl_account"},
            ]
        },
        "outcomes": {"auto_post_if": "ai_confidence >= 0.8", "else": "stage_for_review"},
    },
    {
        "smart_code": "HERA.SALON.SALE.PRODUCT.v1",
        "description": "Retail product sale",
        "validations": {
            "required_header": ["organization_id", "origin_txn_id"],
            "required_lines": ["role"],
            "fiscal_check": "open_period",
        },
        "posting_recipe": {
            "lines": [
                {"derive": "DR Payment", "from": "entity.gl_account"},
                {"derive": "CR Revenue", "from": "entity.revenue_account"},
                {"derive": "CR Tax", "from": "entity.gl_account"},
            ]
        },
        "outcomes": {"auto_post_if": "ai_confidence >= 0.85 AND amount <= 5000", "else": "stage_for_review"},
    },
    {
        "smart_code": "HERA.SALON.EXPENSE.SALARY.v1",
        "description": "Stylist salary with withholdings; managers always go to approval",
        "validations": {
            "required_header": ["organization_id", "origin_txn_id"],
            "fiscal_check": "open_period",
            "amount_limits": {"approval_threshold": "20000"},
        },
        "posting_recipe": {
            "lines": [
                {"derive": "DR Payroll Expense", "from": "finance.accounts.salary_expense"},
                {"derive": "CR Payment", "from": "entity.gl_account"},
                {"derive": "CR Withholdings", "from": "finance.accounts.payroll_withholdings"},
            ]
        },
        "outcomes": {
            "auto_post_if": "ai_confidence >= 0.85 AND amount <= 15000",
            "approval_required_if": "amount > 20000 OR metadata.employee_type = \"manager\"",
            "else": "stage_for_review",
        },
    },
    {
        "smart_code": "HERA.SALON.POS.DAILY_SUMMARY.v1",
        "description": "End-of-day POS summary",
        "validations": {"required_header": ["organization_id"], "fiscal_check": "allow_future"},
        "posting_recipe": {
            "lines": [
                {"derive": "DR Cash Collected", "from": "finance.accounts.cash_on_hand"},
                {"derive": "DR Card Settlement", "from": "finance.accounts.card_clearing"},
                {"derive": "CR Service Revenue", "from": "finance.accounts.service_revenue"},
                {"derive": "CR Product Revenue", "from": "finance.accounts.product_revenue"},
                {"derive": "CR Tax", "from": "finance.accounts.vat_payable"},
            ]
        },
        "outcomes": {"auto_post_if": "ai_confidence >= 0.95", "else": "stage_for_review"},
    },
]
