import unittest

from dispatchkit.geo import distance_m, haversine_m
from dispatchkit.models import Coordinate


class TestHaversine(unittest.TestCase):
    def test_zero_distance(self):
        self.assertEqual(haversine_m(12.97, 77.59, 12.97, 77.59), 0.0)

    def test_one_degree_of_latitude(self):
        self.assertAlmostEqual(haversine_m(0.0, 0.0, 1.0, 0.0), 111194.93, delta=1.0)

    def test_known_city_pair(self):
        # Bengaluru to Chennai, roughly 290 km as the crow flies
        d = haversine_m(12.9716, 77.5946, 13.0827, 80.2707)
        self.assertTrue(285000 < d < 295000)

    def test_symmetric(self):
        a = Coordinate(longitude=77.59, latitude=12.97)
        b = Coordinate(longitude=77.60, latitude=12.98)
        self.assertAlmostEqual(distance_m(a, b), distance_m(b, a))

    def test_radius_boundary(self):
        center = Coordinate(longitude=0.0, latitude=0.0)
        inside = Coordinate(longitude=0.0, latitude=0.0089)
        outside = Coordinate(longitude=0.0, latitude=0.009)
        self.assertLessEqual(distance_m(center, inside), 1000)
        self.assertGreater(distance_m(center, outside), 1000)


if __name__ == '__main__':
    unittest.main()
