# sigrelay protocol constants (message types, error reasons, limits)

ROOM_KEY_SEP = "::"

# Channel names (app and room)
CHANNEL_NAME_MAX_CHARS = 64

# Presence
DISPLAY_NAME_MAX_CHARS = 24
DEFAULT_DISPLAY_NAME = "Player"

STATUS_LOBBY = "lobby"
STATUS_PLAYING = "playing"

DEFAULT_MAX_ROOM_SIZE = 64
MIN_MAX_ROOM_SIZE = 2

# Name allocation
NAME_RANDOM_ATTEMPTS = 500
NAME_RANDOM_MIN = 100
NAME_RANDOM_MAX = 999
NAME_SEQUENTIAL_START = 2
NAME_SEQUENTIAL_LIMIT = 10000
NAME_CLOCK_MODULUS = 100000

# Inbound message types
T_JOIN = "join"
T_SIGNAL = "signal"
T_DIRECT = "direct"
T_BROADCAST = "broadcast"
T_SET_META = "set-meta"
T_PING = "ping"

# Outbound message types
T_WELCOME = "welcome"
T_PEER_JOINED = "peer-joined"
T_PEER_LEFT = "peer-left"
T_META_UPDATED = "meta-updated"
T_PEER_META = "peer-meta"
T_PONG = "pong"
T_ERROR = "error"

# Error reasons
E_INVALID_JSON = "invalid-json"
E_JOIN_REQUIRED_FIRST = "join-required-first"
E_INVALID_APP_OR_ROOM = "invalid-app-or-room"
E_ROOM_FULL = "room-full"
E_UNKNOWN_MESSAGE_TYPE = "unknown-message-type"
E_MISSING_TARGET = "missing-target"
E_PEER_NOT_FOUND = "peer-not-found"
E_PEER_OUTSIDE_ROOM = "peer-outside-room"
E_INVALID_META_PATCH = "invalid-meta-patch"
