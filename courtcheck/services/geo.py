import math

EARTH_RADIUS_MILES = 3959


def haversine_distance(lat1, lon1, lat2, lon2):
    R = EARTH_RADIUS_MILES
    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lon2 - lon1)
    a = (math.sin(dlat / 2) ** 2 +
         math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) *
         math.sin(dlon / 2) ** 2)
    return R * 2 * math.asin(math.sqrt(a))


def distance_to_facility(fix, facility):
    """Great-circle miles between a GPS fix and a facility."""
    return haversine_distance(fix.latitude, fix.longitude, facility.latitude, facility.longitude)
