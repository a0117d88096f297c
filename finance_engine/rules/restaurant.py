"""
HERA Finance Engine - Restaurant Posting Rules

Food and beverage revenue are split by the `category` carried on each
revenue line.
"""

INDUSTRY = "restaurant"

DEFAULT_ACCOUNTS = {
    "food_revenue": "4110",
    "beverage_revenue": "4120",
    "food_inventory": "1310",
    "beverage_inventory": "1320",
}

POSTING_RULES = [
    {
        "smart_code": "HERA.RESTAURANT.SALE.ORDER.v1",
        "description": "Restaurant order settled at the table",
        "validations": {
            "required_header": ["organization_id", "origin_txn_id"],
            "required_lines": ["role"],
            "fiscal_check": "open_period",
        },
        "posting_recipe": {
            "lines": [
                {"derive": "DR Payment", "from": "entity.gl_account"},
                {"derive": "CR Revenue", "from": "finance.accounts.food_revenue", "conditions": {"category": "food"}},
                {"derive": "CR Revenue", "from": "finance.accounts.beverage_revenue",
                 "conditions": {"category": "beverage"}},
                {"derive": "CR Tax", "from": "entity.gl_account"},
            ]
        },
        "outcomes": {"auto_post_if": "ai_confidence >= 0.8", "else": "stage_for_review"},
    },
    {
        "smart_code": "HERA.RESTAURANT.INV.WASTAGE.v1",
        "description": "Kitchen wastage write-off",
        "validations": {"required_header": ["organization_id", "origin_txn_id"], "fiscal_check": "open_period"},
        "posting_recipe": {
            "lines": [
                {"derive": "DR Wastage", "from": "finance.accounts.wastage_expense"},
                {"derive": "CR Inventory", "from": "finance.accounts.beverage_inventory",
                 "conditions": {"category": "beverage"}},
                {"derive": "CR Inventory", "from": "finance.accounts.food_inventory"},
            ]
        },
        "outcomes": {
            "auto_post_if": "ai_confidence >= 0.9",
            "approval_required_if": "amount > 500",
            "else": "stage_for_review",
        },
    },
]
