import unittest

from carfinder.candidates import dedup_key, describe, identity_matches, pinned_hint, pinned_keys
from carfinder.schemas import ElaborationSchema, VerifyCarSchema


class CandidateTests(unittest.TestCase):
    def test_dedup_key(self):
        self.assertEqual(dedup_key({"make": "Toyota", "model": "Corolla"}), "toyota-corolla")

    def test_describe(self):
        self.assertEqual(describe({"make": "Mazda", "model": "3", "year": 2020}), "Mazda 3 (2020)")
        self.assertEqual(describe({"make": "Mazda", "model": "3"}), "Mazda 3")

    def test_identity_matches_normalizes_year(self):
        original = {"make": "Toyota", "model": "Corolla", "year": 2019}
        self.assertTrue(identity_matches(original, {"make": "Toyota", "model": "Corolla", "year": "2019"}))
        self.assertFalse(identity_matches(original, {"make": "Toyota", "model": "Corolla", "year": 2018}))
        self.assertFalse(identity_matches(original, {"make": "toyota", "model": "Corolla", "year": 2019}))

    def test_pinned_keys_and_hint(self):
        pinned = [{"make": "Toyota", "model": "Corolla", "year": 2019}]
        self.assertEqual(pinned_keys(pinned), {"toyota-corolla"})
        self.assertIn("- Toyota Corolla (2019)", pinned_hint(pinned))
        self.assertEqual(pinned_hint([]), "")


class SchemaTests(unittest.TestCase):
    def test_elaboration_requires_reason(self):
        with self.assertRaises(Exception):
            ElaborationSchema.model_validate({"price": "1"})

    def test_elaboration_merge_fields_only_set_values(self):
        fields = ElaborationSchema.model_validate({"reason": "r", "price": 12000}).merge_fields()
        self.assertEqual(fields, {"reason": "r", "price": "12000"})

    def test_verify_confidence_range(self):
        with self.assertRaises(Exception):
            VerifyCarSchema.model_validate({"modelConfidence": 1.5, "textConfidence": 0})


if __name__ == "__main__":
    unittest.main()
