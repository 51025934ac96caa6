"""
System and user prompts for spending categorization.
Embeds the category catalog and the buyer/partner context.
"""
from typing import List, Optional

from core.schema import Category

SYSTEM_PROMPT = (
    "You categorize purchases for a couple that shares expenses. "
    "You answer with valid JSON only, without markdown formatting."
)

JSON_FORMAT = (
    '{"ambiguity_flag": "<string>", "spendings": [{"apportion_mode": "shared|alone|other", '
    '"category": "<category_name>", "amount": <float>, "description": "<string>"}]}'
)

PARTNER_PLACEHOLDER = "Partner"


def format_category_list(categories: List[Category]) -> str:
    """
    Format the category catalog for the prompt.

    Args:
        categories: Category catalog

    Returns:
        One line per category, notes in quotes after the name
    """
    lines = []
    for category in categories:
        line = f"- {category.name}"
        if category.ai_notes:
            line += f' - "{category.ai_notes}"'
        lines.append(line)
    return "\n".join(lines)


def build_apportion_rules(buyer_name: str, partner_name: Optional[str]) -> str:
    """Explain how apportion_mode is chosen, depending on whether a partner exists."""
    if partner_name is None:
        return '- "alone": Use for every part, since there is no partner to share with.'

    return (
        f'- "alone": Use when the description says the item is ONLY for the buyer ({buyer_name}), '
        "OR when nothing about sharing or the partner is mentioned (default for personal items "
        "such as clothes or tickets).\n"
        '- "shared": Use when the description explicitly says the item is shared, joint or "for us", '
        f"OR when it is a typical joint expense (groceries, dinner out) AND a partner ({partner_name}) "
        "exists AND nothing else is specified.\n"
        f'- "other": Use ONLY when the description explicitly says the item is ONLY for the partner ({partner_name}).'
    )


def build_examples(buyer_name: str, partner_name: Optional[str]) -> str:
    """Worked examples of splitting a description into parts."""
    partner = partner_name or PARTNER_PLACEHOLDER
    who = f"Buyer: {buyer_name}, Partner: {partner}"
    return "\n".join([
        f'1. Description: "Red Bull for me for 25, the rest is a shared dinner", Total: 100, {who}',
        '   -> [{"apportion_mode":"alone", "category":"...", "amount":25.0, "description":"Red Bull"}, '
        '{"apportion_mode":"shared", "category":"...", "amount":75.0, "description":"Dinner"}]',
        f'2. Description: "Tickets", Total: 500, {who}',
        '   -> [{"apportion_mode":"alone", "category":"...", "amount":500.0, "description":"Tickets"}] '
        "(sharing is not mentioned)",
        f'3. Description: "Bread for {partner}", Total: 40, {who}',
        '   -> [{"apportion_mode":"other", "category":"...", "amount":40.0, "description":"Bread"}] '
        "(it is specifically for the partner)",
        f'4. Description: "Shared lunch", Total: 200, {who}',
        '   -> [{"apportion_mode":"shared", "category":"...", "amount":200.0, "description":"Lunch"}]',
        f'5. Description: "Groceries", Total: 350, {who}',
        '   -> [{"apportion_mode":"shared", "category":"Groceries", "amount":350.0, "description":"Groceries"}] '
        "(assume shared for joint categories when a partner exists and nothing else is said)",
        f'6. Description: "Sweater", Total: 600, {who}',
        '   -> [{"apportion_mode":"alone", "category":"Clothes", "amount":600.0, "description":"Sweater"}] '
        "(assume personal for things like clothes)",
        f'7. Description: "Plane tickets for us", Total: 2000, {who}',
        '   -> [{"apportion_mode":"shared", "category":"Transport", "amount":2000.0, "description":"Plane tickets"}]',
    ])


def build_system_prompt() -> str:
    """
    Build the system prompt.

    Returns:
        Complete system prompt string
    """
    return SYSTEM_PROMPT


def build_user_message(
    description: str,
    total_amount: float,
    buyer_name: str,
    partner_name: Optional[str],
    categories: List[Category],
) -> str:
    """
    Build the categorization request for one purchase.

    Args:
        description: Free-text description given by the buyer
        total_amount: Declared total of the purchase
        buyer_name: Name of the person who paid
        partner_name: Name of the settlement partner, None if there is none
        categories: Category catalog to choose from

    Returns:
        Formatted user message string
    """
    if partner_name is not None:
        user_info = (
            f"The person who paid (and wrote the description) is {buyer_name}. "
            f"The purchase may involve the partner {partner_name}."
        )
    else:
        user_info = (
            f"The person who paid (and wrote the description) is {buyer_name}. "
            "No partner is involved."
        )

    return f"""You will now categorize a purchase from a list of categories and a description of the purchase. This is ONE purchase at ONE store.
{user_info}
The total amount of the purchase is {total_amount} kroner.
The description of the purchase is: "{description}".

Split the purchase into one or more parts based on the description and the total amount.
For EACH part, decide 'apportion_mode' based ONLY on the description.
Return JSON in the format:
{JSON_FORMAT}
with one or more elements in the "spendings" list.

IMPORTANT RULES FOR 'apportion_mode':
{build_apportion_rules(buyer_name, partner_name)}

- ambiguity_flag: If anything about the purchase, the split or the description is unclear, fill the string with a short reason. Otherwise leave it empty (""). Do not overuse it.
- description: May be an empty string ("") if the category is descriptive enough.

Examples of how 'apportion_mode' is decided from the description:
{build_examples(buyer_name, partner_name)}

Here is the list of categories to choose from (category name first, notes after):
{format_category_list(categories)}
Use the most specific category. Use EXACTLY the right category name.

Exclude savings and investments from the answer.
The answer must ONLY be valid JSON, WITHOUT markdown formatting. The sum of 'amount' in the answer MUST equal the total amount.
"""
