"""
HERA Finance Engine - Furniture Manufacturing Posting Rules
"""

INDUSTRY = "furniture"

DEFAULT_ACCOUNTS = {
    "raw_materials": "1330",
    "work_in_progress": "1340",
    "finished_goods": "1350",
    "furniture_revenue": "4300",
}

POSTING_RULES = [
    {
        "smart_code": "HERA.FURNITURE.MFG.PRODUCTION.COMPLETE.v1",
        "description": "Production order completed: WIP moved to finished goods",
        "validations": {"required_header": ["organization_id", "origin_txn_id"], "fiscal_check": "open_period"},
        "posting_recipe": {
            "lines": [
                {"derive": "DR Finished Goods", "from": "finance.accounts.finished_goods"},
                {"derive": "CR WIP", "from": "finance.accounts.work_in_progress"},
            ]
        },
        "outcomes": {"auto_post_if": "ai_confidence >= 0.9", "else": "stage_for_review"},
    },
    {
        "smart_code": "HERA.FURNITURE.SALE.INVOICE.v1",
        "description": "Furniture sales invoice on customer credit",
        "validations": {
            "required_header": ["organization_id", "origin_txn_id", "currency"],
            "required_lines": ["role"],
            "fiscal_check": "open_period",
            "amount_limits": {"min_amount": "0.01", "approval_threshold": "100000"},
        },
        "posting_recipe": {
            "lines": [
                {"derive": "DR AR", "from": "entity.ar_control"},
                {"derive": "CR Revenue", "from": "finance.accounts.furniture_revenue"},
                {"derive": "CR Tax", "from": "entity.gl_account"},
            ]
        },
        "outcomes": {"auto_post_if": "ai_confidence >= 0.9 AND amount <= 50000", "else": "stage_for_review"},
    },
]
