"""Default locations and provider endpoints."""

from weatheralert.models.forecast import Coordinate

# Used when no device fix is available (first run with denied or slow location).
DEFAULT_FALLBACK = Coordinate(latitude=53.3498, longitude=-6.2603)  # Dublin

METEOMATICS_BASE_URL = "https://api.meteomatics.com"
NOMINATIM_URL = "https://nominatim.openstreetmap.org"
BIGDATACLOUD_URL = "https://api.bigdatacloud.net/data/reverse-geocode-client"
IP_LOOKUP_URL = "http://ip-api.com/json"
DEFAULT_USER_AGENT = "weatheralert/0.1.0"
