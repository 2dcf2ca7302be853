"""Constants for MagToEpub."""

# Application constants
APP_CREATOR = "MagToEpub AI"

# Default paths
DEFAULT_OUTPUT_DIR = "output"
DEFAULT_LOG_DIR = ".logs"
DEFAULT_CONFIG_FILE = "magtoepub.yaml"
DEFAULT_TITLE = "magazine"

# Credential environment variables checked after MAGTOEPUB_LLM__API_KEY
API_KEY_ENV_VARS = ("GOOGLE_API_KEY", "API_KEY")

# Models
DEFAULT_CAPTION_MODEL = "gemini-flash-lite-latest"
DEFAULT_TEXT_MODEL = "gemini-2.5-flash"
DEFAULT_LLM_TIMEOUT = 120  # seconds

# Retry settings (rate-limit-class errors only)
DEFAULT_RETRY_ATTEMPTS = 5
DEFAULT_RETRY_INITIAL_DELAY = 2.0  # seconds, doubled after each retry

# Batch planning
# ~2000-2500 words per request keeps the response under the output token ceiling
MAX_CHARS_PER_BATCH = 12000
MAX_PAGES_PER_BATCH = 8
FALLBACK_PAGE_WEIGHT = 1000
TEXT_BATCH_DELAY = 5.0  # seconds between text-generation requests

# Image extraction
EXTRACTION_CONCURRENCY = 4
MIN_IMAGE_DIMENSION = 200
MAX_IMAGE_WIDTH = 1000
CONTENT_IMAGE_JPEG_QUALITY = 80
COVER_RENDER_SCALE = 2.0
COVER_JPEG_QUALITY = 95
PAGE_RENDER_SCALE = 1.5
PAGE_JPEG_QUALITY = 85

# Image captioning
CAPTION_BATCH_SIZE = 8
CAPTION_BATCH_DELAY = 1.0  # seconds between caption requests

# Filename convention shared by every stage: image_p<page>_i<index>.jpg
COVER_IMAGE_NAME = "image_p1_i1.jpg"
COVER_DESCRIPTION = "Magazine Cover"
IMAGE_MIME_TYPE = "image/jpeg"

# Emitted by the model after each physical page
PAGE_BREAK_MARKER = "<!-- PAGE_BREAK -->"

# Reading statistics
WORDS_PER_MINUTE = 200
