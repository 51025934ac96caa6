"""
Validation of classified line items against the job's partner and the
category catalog.
"""
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from core.exceptions import ApportionmentError, UnknownCategoryError
from core.logger import setup_logger
from core.schema import ApportionMode, ClassifiedLineItem, ResolvedLineItem

logger = setup_logger(__name__)

CategoryLookup = Callable[[Iterable[str]], Dict[str, int]]


def apportion(mode: ApportionMode, partner_id: Optional[int]) -> Tuple[Optional[int], bool]:
    """
    Map an apportionment mode to the (shared_with, takes_all) pair stored on a user spending.

    Shared items are not pre-divided; the even split is computed downstream.

    Raises:
        ApportionmentError: If the mode needs a partner and there is none
    """
    if mode is ApportionMode.ALONE:
        return None, False
    if partner_id is None:
        raise ApportionmentError(
            f"Apportion mode '{mode.value}' requires a partner, but the buyer has none",
            details={"apportion_mode": mode.value}
        )
    if mode is ApportionMode.SHARED:
        return partner_id, False
    return partner_id, True


def resolve_line_items(
    items: List[ClassifiedLineItem],
    partner_id: Optional[int],
    lookup: CategoryLookup,
) -> List[ResolvedLineItem]:
    """
    Validate line items and resolve their categories in one batched lookup.

    Args:
        items: Line items returned by the classifier
        partner_id: The job's settlement partner, if any
        lookup: Batched name -> id resolver

    Returns:
        Resolved line items in the original order

    Raises:
        ApportionmentError: If a mode is not allowed without a partner
        UnknownCategoryError: If any category name is not in the catalog
    """
    apportioned = [apportion(item.apportion_mode, partner_id) for item in items]

    category_ids = lookup(item.category for item in items)
    missing = sorted({item.category for item in items if item.category not in category_ids})
    if missing:
        logger.warning(f"Categories not found in catalog: {missing}")
        raise UnknownCategoryError(
            f"Unknown categor{'y' if len(missing) == 1 else 'ies'}: {', '.join(missing)}",
            details={"categories": missing}
        )

    return [
        ResolvedLineItem(
            amount=item.amount,
            description=item.description,
            category_id=category_ids[item.category],
            apportion_mode=item.apportion_mode,
            shared_with=shared_with,
            takes_all=takes_all,
        )
        for item, (shared_with, takes_all) in zip(items, apportioned)
    ]
