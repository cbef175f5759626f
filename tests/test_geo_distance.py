from __future__ import annotations

import unittest
from decimal import Decimal

from dropcart.utils.geo import haversine_km, round_km, valid_coordinates
from dropcart.utils.money import bps_of_minor, money_major_to_minor, money_minor_to_major, quantize_money, to_decimal


class GeoDistanceTestCase(unittest.TestCase):
    def test_same_point_is_zero(self):
        self.assertEqual(haversine_km(52.52, 13.405, 52.52, 13.405), 0.0)

    def test_meridian_offsets_round_to_tenths(self):
        self.assertEqual(haversine_km(52.52, 13.405, 52.52 + 0.044966, 13.405), 5.0)
        self.assertEqual(haversine_km(52.52, 13.405, 52.52 + 0.045866, 13.405), 5.1)
        self.assertEqual(haversine_km(52.52, 13.405, 52.52 + 0.062953, 13.405), 7.0)

    def test_distance_is_symmetric(self):
        a = haversine_km(40.7128, -74.006, 34.0522, -118.2437)
        b = haversine_km(34.0522, -118.2437, 40.7128, -74.006)
        self.assertEqual(a, b)
        self.assertAlmostEqual(a, 3935.7, delta=5.0)

    def test_antipodal_points_do_not_fail(self):
        self.assertAlmostEqual(haversine_km(0, 0, 0, 180), 20015.1, delta=0.2)

    def test_round_km_uses_half_up(self):
        self.assertEqual(round_km(2.25), 2.3)
        self.assertEqual(round_km(2.24), 2.2)

    def test_valid_coordinates(self):
        self.assertTrue(valid_coordinates(52.5, 13.4))
        self.assertTrue(valid_coordinates("52.5", "13.4"))
        self.assertFalse(valid_coordinates(None, 13.4))
        self.assertFalse(valid_coordinates(91, 0))
        self.assertFalse(valid_coordinates(0, 181))
        self.assertFalse(valid_coordinates("nan", 0))


class MoneyHelpersTestCase(unittest.TestCase):
    def test_major_minor_conversion(self):
        self.assertEqual(money_major_to_minor("12.50"), 1250)
        self.assertEqual(money_major_to_minor(0.005), 1)
        self.assertEqual(money_major_to_minor(-3), 0)
        self.assertEqual(money_minor_to_major(1999), 19.99)

    def test_basis_points_round_half_up(self):
        self.assertEqual(bps_of_minor(2500, 1000), 250)
        self.assertEqual(bps_of_minor(5, 1000), 1)
        self.assertEqual(bps_of_minor(4, 1000), 0)

    def test_quantize_money(self):
        self.assertEqual(str(quantize_money("2.345")), "2.35")
        self.assertEqual(str(quantize_money(None)), "0.00")

    def test_non_finite_amounts_are_rejected(self):
        self.assertEqual(to_decimal("abc"), Decimal("0"))
        for bad in ("NaN", "Infinity", "-inf", Decimal("sNaN"), float("nan")):
            with self.assertRaises(ValueError):
                to_decimal(bad)


if __name__ == "__main__":
    unittest.main()
