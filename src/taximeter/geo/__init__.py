from .distance import EARTH_RADIUS_M, haversine_distance_m, is_valid_coordinate, mps_to_kmh

__all__ = ["EARTH_RADIUS_M", "haversine_distance_m", "is_valid_coordinate", "mps_to_kmh"]
