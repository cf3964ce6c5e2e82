# ========== Defaults ==========

DEFAULT_BUFFER_SIZE = 8192
DEFAULT_LOCAL_PORT = 1209
DEFAULT_TIMEOUT = 30  # seconds, 0 disables

DEFAULT_ENABLE_FILE_LOGGING = True
DEFAULT_SEPARATE_DATA_LOGS = False
DEFAULT_LOG_DATA_PAYLOAD = True

DEFAULT_SETTINGS_FILE = "tcs-settings.json"
LOGS_DIR = "logs"

LISTEN_HOST = "0.0.0.0"
LISTEN_BACKLOG = 100

# ========== Option names ==========

ENDPOINT = "endpoint"
PORT = "port"
LOCAL_PORT = "localport"
BUFFER_SIZE = "buffer"
TIMEOUT = "timeout"
ENABLE_FILE_LOGGING = "enablefilelogging"
SEPARATE_DATA_LOGS = "separatedatalogs"
LOG_DATA_PAYLOAD = "logdatapayload"

# ========== Direction labels ==========

CLIENT_TO_REMOTE = "Client => Remote"
REMOTE_TO_CLIENT = "Remote => Client"
