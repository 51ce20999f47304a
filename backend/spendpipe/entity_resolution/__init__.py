"""Entity resolution package."""

from spendpipe.entity_resolution.filters import (
    is_likely_council,
    is_likely_government_department,
    is_likely_nhs_organisation,
    is_likely_not_an_organisation,
    is_numeric_name,
)
from spendpipe.entity_resolution.similarity import dice_coefficient, name_similarity, normalize_org_name

__all__ = [
    "dice_coefficient",
    "is_likely_council",
    "is_likely_government_department",
    "is_likely_nhs_organisation",
    "is_likely_not_an_organisation",
    "is_numeric_name",
    "name_similarity",
    "normalize_org_name",
]
