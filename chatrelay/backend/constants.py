APP_NAME = "Chat Relay"
APP_VERSION = "1.0.0"
DEFAULT_CORS_ALLOW_ORIGINS = [
	"http://localhost",
	"http://127.0.0.1",
	"http://localhost:5173",
	"http://localhost:5174",
]
DEFAULT_TRUSTED_HOSTS = [
	"127.0.0.1",
	"localhost",
	"testserver",
]

REMOTE_TIMEOUT_S = 2.2
REMOTE_STREAM_TIMEOUT_S = 12.0

SMART_LATENCY_RANGE_S = (0.55, 1.35)
LITE_LATENCY_RANGE_S = (0.24, 0.50)
SMART_THINKING_DELAY_S = 0.13
LITE_THINKING_DELAY_S = 0.075
CHUNK_DELAY_RANGE_S = (0.018, 0.084)
CHUNK_WORDS_RANGE = (2, 5)

DEMO_CHECK_CHARS = 160
MAX_ACTION_CONTEXT_LINES = 6
MAX_ACTION_CONTEXT_CHARS = 360
