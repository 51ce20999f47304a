"""Unit tests for controlled entity and org type vocabularies."""

import unittest

from spendpipe.schema.entity_types import (
    ENTITY_TYPE_VALUES,
    HEALTH_ENTITY_TYPES,
    entity_type_for_ods_role,
    normalize_org_type,
)


class OrgTypeNormalizationTests(unittest.TestCase):
    def test_synonyms_map_to_controlled_values(self) -> None:
        self.assertEqual(normalize_org_type("NHS"), "nhs")
        self.assertEqual(normalize_org_type(" health "), "nhs")
        self.assertEqual(normalize_org_type("Local Authority"), "council")
        self.assertEqual(normalize_org_type("government-department"), "government_department")

    def test_unknown_type_is_rejected(self) -> None:
        self.assertIsNone(normalize_org_type("charity"))
        self.assertIsNone(normalize_org_type(None))
        self.assertIsNone(normalize_org_type("   "))


class OdsRoleTests(unittest.TestCase):
    def test_known_role_codes(self) -> None:
        self.assertEqual(entity_type_for_ods_role("RO197"), "nhs_trust")
        self.assertEqual(entity_type_for_ods_role("ro261"), "nhs_icb")
        self.assertEqual(entity_type_for_ods_role("RO177"), "nhs_practice")

    def test_description_fallback(self) -> None:
        self.assertEqual(entity_type_for_ods_role(None, "Integrated Care Board"), "nhs_icb")
        self.assertEqual(entity_type_for_ods_role("RO999", "Prescribing Cost Centre"), "nhs_practice")
        self.assertEqual(entity_type_for_ods_role(None, None), "nhs_trust")

    def test_health_types_are_entity_types(self) -> None:
        self.assertTrue(set(HEALTH_ENTITY_TYPES) <= set(ENTITY_TYPE_VALUES))


if __name__ == "__main__":
    unittest.main()
