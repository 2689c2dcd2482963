# Remote provider
OPENAI_VISION_MODEL = "gpt-5-mini"

# API defaults
API_TIMEOUT_SECONDS = 30
API_MAX_RETRIES = 3

# Concurrency
DEFAULT_MAX_CONCURRENCY = 4

# Preprocessing
LOW_PERCENTILE = 2.0
HIGH_PERCENTILE = 98.0
MIN_THRESHOLD_WINDOW = 15
THRESHOLD_WINDOW_DIVISOR = 20
THRESHOLD_OFFSET = 10
MIN_FOREGROUND_NEIGHBORS = 3

# Candidate filtering (exclusive bounds)
MIN_ASPECT_RATIO = 0.8
MAX_ASPECT_RATIO = 3.0
MIN_COMPONENT_AREA = 50
MAX_COMPONENT_AREA = 5000
MIN_DENSITY = 0.3
MAX_DENSITY = 0.9

# Template matching
TEMPLATE_WIDTH = 40
TEMPLATE_HEIGHT = 60
GLYPH_MARGIN = 4
GLYPH_THRESHOLD_OFFSET = 8
MATCH_THRESHOLD = 0.72
SYMBOL_ALPHABET = "0123456789-"

# Grouping (multiples of the larger glyph height)
GROUP_GAP_FACTOR = 1.5
GROUP_LINE_FACTOR = 0.5

# Validation
LINE_TOLERANCE_PX = 20.0
PARTIAL_MATCH_CONFIDENCE = 0.85

# Calibration
DEGENERATE_SPREAD_FRACTION = 0.10
CALIBRATED_CONFIDENCE_FACTOR = 0.9
RADIAL_STEP_DEGREES = 15.0
RADIAL_RADIUS_FRACTION = 0.3
RADIAL_RING_SHRINK = 0.25  # radius divisor growth per full turn
RADIAL_HASH_MODULUS = 240  # non-integer ids spread over ten turns
RADIAL_BOX_FRACTION = 0.05

TEXT_REGION_PROMPT = """This is a technical parts diagram (exploded view) with small printed
part numbers next to the drawn components.

Find every printed part number. Part numbers contain only the digits 0-9 and
an optional leading minus sign (for example "7", "16", "-6").

Return JSON with:
- regions: list of objects with
  - text: the part number exactly as printed
  - confidence: float 0.0-1.0
  - x, y: pixel coordinates of the top-left corner of the number
  - width, height: pixel size of the number

Coordinates are in pixels of the supplied image. Return only valid JSON, no markdown."""
