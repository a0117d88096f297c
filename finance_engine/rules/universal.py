"""
HERA Finance Engine - Universal Posting Rules

Cross-industry defaults (lowest priority in the merged registry). Every
organization gets these, whatever its industry.
"""

INDUSTRY = "universal"

DEFAULT_ACCOUNTS = {
    "cash_on_hand": "1100",
    "bank_main": "1120",
    "accounts_receivable": "1200",
    "inventory": "1300",
    "grir_clearing": "2150",
    "accounts_payable": "2100",
    "payroll_withholdings": "2250",
    "vat_payable": "2300",
    "sales_revenue": "4000",
    "cost_of_sales": "5000",
    "wastage_expense": "5900",
    "salary_expense": "6100",
    "general_expense": "6900",
    "bank_fees": "6500",
}

POSTING_RULES = [
    {
        "smart_code": "HERA.ERP.SD.Invoice.Posted.v1",
        "description": "Customer invoice: receivable against revenue and output tax",
        "validations": {
            "required_header": ["organization_id", "origin_txn_id", "currency"],
            "required_lines": ["role"],
            "fiscal_check": "open_period",
            "amount_limits": {"approval_threshold": "100000"},
        },
        "posting_recipe": {
            "lines": [
                {"derive": "DR AR", "from": "entity.ar_control"},
                {"derive": "CR Revenue", "from": "entity.revenue_account"},
                {"derive": "CR Tax", "from": "entity.gl_account"},
            ]
        },
        "outcomes": {
            "auto_post_if": "ai_confidence >= 0.9 AND amount <= 50000",
            "else": "stage_for_review",
        },
    },
    {
        "smart_code": "HERA.ERP.SD.Order.Created.v1",
        "description": "Sales order: commitment only, no ledger impact",
        "validations": {"required_header": ["organization_id", "origin_txn_id"]},
        "posting_recipe": {"lines": []},
        "outcomes": {"else": "stage_for_review"},
    },
    {
        "smart_code": "HERA.ERP.MM.GoodsReceipt.Posted.v1",
        "description": "Goods receipt: inventory against the vendor's payable account",
        "validations": {
            "required_header": ["organization_id", "origin_txn_id"],
            "required_lines": ["role"],
            "fiscal_check": "open_period",
        },
        "posting_recipe": {
            "lines": [
                {"derive": "DR Inventory", "from": "entity.inventory_account"},
                {"derive": "CR AP", "from": "vendor.ap_control"},
                {"derive": "CR GRIR", "from": "finance.accounts.grir_clearing"},
            ]
        },
        "outcomes": {"auto_post_if": "ai_confidence >= 0.85", "else": "stage_for_review"},
    },
    {
        "smart_code": "HERA.ERP.MM.Wastage.WriteOff.v1",
        "description": "Inventory written off as wastage",
        "validations": {"required_header": ["organization_id", "origin_txn_id"], "fiscal_check": "open_period"},
        "posting_recipe": {
            "lines": [
                {"derive": "DR Wastage", "from": "finance.accounts.wastage_expense"},
                {"derive": "CR Inventory", "from": "entity.inventory_account"},
            ]
        },
        "outcomes": {
            "auto_post_if": "ai_confidence >= 0.9",
            "approval_required_if": "amount > 5000",
            "else": "stage_for_review",
        },
    },
    {
        "smart_code": "HERA.ERP.HR.Payroll.Run.v1",
        "description": "Payroll run: salary expense against payment and withholdings",
        "validations": {
            "required_header": ["organization_id", "origin_txn_id"],
            "fiscal_check": "open_period",
            "amount_limits": {"approval_threshold": "20000"},
        },
        "posting_recipe": {
            "lines": [
                {"derive": "DR Salary Expense", "from": "finance.accounts.salary_expense"},
                {"derive": "CR Payment", "from": "entity.gl_account"},
                {"derive": "CR Withholdings", "from": "finance.accounts.payroll_withholdings"},
            ]
        },
        "outcomes": {"auto_post_if": "ai_confidence >= 0.85 AND amount <= 15000", "else": "stage_for_review"},
    },
    {
        "smart_code": "HERA.ERP.FI.Expense.Posted.v1",
        "description": "Expense paid immediately or recorded on account",
        "validations": {
            "required_header": ["organization_id", "origin_txn_id"],
            "required_lines": ["role"],
            "fiscal_check": "open_period",
            "currency_validation": True,
        },
        "posting_recipe": {
            "lines": [
                {"derive": "DR Expense", "from": "entity.gl_account"},
                {"derive": "CR Payment", "from": "entity.gl_account"},
                {"derive": "CR AP", "from": "entity.gl_account"},
            ]
        },
        "outcomes": {
            "auto_post_if": "ai_confidence >= 0.8 AND amount <= 10000",
            "approval_required_if": "amount > 25000",
            "else": "stage_for_review",
        },
    },
    {
        "smart_code": "HERA.ERP.FI.BankFee.v1",
        "description": "Bank charges debited by the bank",
        "validations": {"required_header": ["organization_id"], "fiscal_check": "open_period"},
        "posting_recipe": {
            "lines": [
                {"derive": "DR Bank Charges", "from": "finance.accounts.bank_fees"},
                {"derive": "CR Bank", "from": "entity.gl_account"},
            ]
        },
        "outcomes": {"auto_post_if": "ai_confidence >= 0.9 AND amount <= 1000", "else": "stage_for_review"},
    },
]
