# =============================================================================
# Output Layout
# =============================================================================

MANIFEST_FILE = "manifest.json"
RECORD_SUFFIX = ".json"
NUMBERED_INPUT_PATTERN = "{index}.pdf"  # 1.pdf, 2.pdf, ... as produced by the splitter

# Input files picked up by directory discovery
INPUT_SUFFIXES = (".pdf", ".jpg", ".jpeg", ".png")


# =============================================================================
# Inference Defaults
# =============================================================================

DEFAULT_LLM_ENDPOINT_URL = "https://api.openai.com/v1/chat/completions"
DEFAULT_MODEL = "gpt-4o"
DEFAULT_MAX_TOKENS = 500
DEFAULT_TEMPERATURE = 1.0
LLM_REQUEST_TIMEOUT_SECONDS = 60  # Timeout for a single chat completion request


# =============================================================================
# Batch Defaults (documented starting points; the controller takes explicit values)
# =============================================================================

DEFAULT_BATCH_SIZE = 50
DEFAULT_RATE_LIMIT_WINDOW_MS = 60_000
DEFAULT_MAX_ITEMS = 100


# =============================================================================
# Error Handling
# =============================================================================

ERROR_BODY_MAX_CHARS = 200  # Maximum chars from error response bodies

# HTTP statuses worth another attempt
TRANSIENT_HTTP_STATUSES = frozenset({408, 409, 429, 500, 502, 503, 504})


# =============================================================================
# Evaluation
# =============================================================================

EVALUATED_FIELDS = (
    "date",
    "invoice_number",
    "store_name",
    "tax_10_amount",
    "tax_8_amount",
    "total_amount",
)
MATCH_SYMBOL = "✅"
MISMATCH_SYMBOL = "❌"
