"""Constants for the Home Connect Cloud integration."""

DOMAIN = "homeconnect_cloud"

# Config entry keys
CONF_CLIENT_ID = "client_id"
CONF_SIMULATOR = "simulator"
CONF_SAVED_AUTH = "saved_auth"

# Serialised token pair keys
TOKEN_REFRESH_TOKEN = "refresh_token"
TOKEN_ACCESS_TOKEN = "access_token"
TOKEN_ACCESS_EXPIRES_AT = "access_expires_at"

# Servers
URL_LIVE = "https://api.home-connect.com"
URL_SIMULATOR = "https://simulator.home-connect.com"

# API endpoints
API_DEVICE_AUTHORIZATION = "/security/oauth/device_authorization"
API_AUTHORIZE = "/security/oauth/authorize"
API_TOKEN = "/security/oauth/token"
API_APPLIANCES = "/api/homeappliances"

MEDIA_TYPE = "application/vnd.bsh.sdk.v1+json"
EVENT_STREAM_MEDIA_TYPE = "text/event-stream"

# An additional partner agreement is required for Hob-Control, Oven-Control
# and FridgeFreezer-Images; the simulator also rejects CookProcessor-Control
# and FridgeFreezer-Control.
SCOPES = [
    "IdentifyAppliance",
    "Monitor",
    "Settings",
    "CleaningRobot-Control",
    "CoffeeMaker-Control",
    "Dishwasher-Control",
    "Dryer-Control",
    "Freezer-Control",
    "Hood-Control",
    "Refrigerator-Control",
    "Washer-Control",
    "WasherDryer-Control",
    "WineCooler-Control",
]

# Help text for problems with the client registration
CLIENT_HELP_PREFIX = "Unable to authorize Home Connect application; "
CLIENT_HELP_LINK = ". Visit https://developer.home-connect.com/applications to "
CLIENT_HELP_EXTRA = {
    "request rejected by client authorization authority (developer portal)": (
        "register an application and then copy its Client ID."
    ),
    "client not authorized for this oauth flow (grant_type)": (
        "register a new application, ensuring that the 'OAuth Flow' is set to "
        "'Device Flow' (this setting cannot be changed after the application "
        "has been created)."
    ),
    "client has no redirect URI defined": (
        "edit the application (or register a new one) to set a "
        "'Success Redirect' web page address."
    ),
    "client has limited user list - user not assigned to client": (
        "edit the application (or register a new one) to set the "
        "'Home Connect User Account for Testing' to match the one being "
        "authorized."
    ),
}

# Timing (seconds)
DEFAULT_TIMEOUT = 30
AUTH_RETRY_DELAY = 60
REFRESH_RETRY_DELAY = 5
TOKEN_REFRESH_WINDOW = 60 * 60
TOKEN_RATE_LIMIT_DELAY = 5 * 60  # Only 100 token refreshes are allowed per day
DEFAULT_RETRY_AFTER = 10
EVENT_STREAM_RETRY_DELAY = 5
APPLIANCE_RETRY_DELAY = 60

DEFAULT_POLL_INTERVAL = 5
DEFAULT_DEVICE_CODE_EXPIRY = 600

# Interruptible sleep identifiers
WAKE_AUTH = "auth"
