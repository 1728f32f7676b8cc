"""
Constants and configuration values for Pulse ranking.
"""

# Snapshot Generation
DEFAULT_TIMEZONE = "America/New_York"
DEFAULT_TAKE = 12
TAKE_MIN = 6
TAKE_MAX = 20
SCHEDULE_INTERVAL_MINUTES = 60
SNAPSHOT_STORE_COUNT = 60  # Items kept per hourly snapshot
SNAPSHOT_STORE_COUNT_MIN = 20
SNAPSHOT_STORE_COUNT_MAX = 120
SNAPSHOT_PER_SOURCE_CAP = 3
SNAPSHOT_PER_BUCKET_CAP = 12
MIN_HEURISTIC_POOL = 12

# Candidate Window
ARTICLE_QUERY_LIMIT = 400
MIN_WINDOW_RESULTS = 10  # Below this, widen the window
WIDENED_WINDOW_HOURS = 24

# Read Path
WARMUP_MINUTES = 5  # Early in the hour, fall back to the previous non-empty hour
WARMUP_MINUTES_MAX = 20
ON_DEMAND_AFTER_MINUTES = 8  # Later in the hour, generate heuristics-only
ON_DEMAND_AFTER_MINUTES_MAX = 59

# Heuristic Importance
RECENCY_EXP = 0.45
RECENCY_MIN_HOURS = 0.5
RECENCY_WEIGHT = 1.1
CORROBORATION_WEIGHT = 0.7
AROUSAL_WEIGHT = 0.25
DEFAULT_AROUSAL = 0.5
TIER1_AUTHORITY = 1.25
BOOST_KEYWORD_DELTA = 0.25
PENALTY_KEYWORD_DELTA = -0.35
CASUALTY_PATTERN_DELTA = 0.25
LEGAL_PATTERN_DELTA = 0.2
VERY_FRESH_HOURS = 3

TIER1_SOURCES = [
    "NYT > Top Stories",
    "AP News",
    "Reuters",
    "The Wall Street Journal",
    "Financial Times",
    "Bloomberg",
    "BBC News",
    "The Washington Post",
    "The Associated Press",
    "NPR",
]

BOOST_KEYWORDS = [
    "ceasefire", "election", "verdict", "lawsuit", "indictment", "sanction",
    "tariff", "acquisition", "merger", "bankruptcy", "recall", "breach",
    "strike", "earthquake", "hurricane", "wildfire", "explosion", "shooting",
    "casualties", "evacuation", "gdp", "inflation", "jobs report",
    "interest rate", "earnings",
]

PENALTY_KEYWORDS = [
    "deal", "% off", "discount", "sale", "coupon", "promo", "hands-on",
    "review", "best price", "buying guide", "how to", "tips", "roundup",
]

TRACKING_PARAMS = {"fbclid", "gclid", "igshid", "ref", "ref_src"}
TRACKING_PARAM_PREFIXES = ("utm_",)

# Topics
ITEM_TOPICS_FROM_TAGS = 6
ITEM_TOPICS_MAX = 8
PREFERRED_BUCKETS = [
    "politics", "finance", "ai", "tech", "science", "space", "sports",
    "health", "climate", "entertainment", "disaster", "world",
]
FALLBACK_BUCKET = "misc"

TOPIC_KEYWORDS = [
    ("ai", "ai"), ("artificial intelligence", "ai"), ("machine learning", "ai"), ("llm", "ai"),
    ("nasa", "space"), ("spacex", "space"), ("rocket", "space"), ("orbit", "space"), ("mars", "space"),
    ("nfl", "sports"), ("nba", "sports"), ("mlb", "sports"), ("goal", "sports"), ("match", "sports"),
    ("election", "politics"), ("senate", "politics"), ("congress", "politics"),
    ("minister", "politics"), ("president", "politics"),
    ("gdp", "finance"), ("inflation", "finance"), ("interest rate", "finance"),
    ("fed", "finance"), ("earnings", "finance"),
    ("climate", "climate"), ("emissions", "climate"), ("heat wave", "climate"),
    ("renewable", "climate"), ("solar", "climate"),
    ("health", "health"), ("medicine", "health"), ("vaccine", "health"),
    ("review", "gadgets"), ("hands-on", "gadgets"), ("chip", "chips"), ("semiconductor", "chips"),
    ("movie", "entertainment"), ("tv", "entertainment"), ("box office", "entertainment"),
    ("earthquake", "disaster"), ("hurricane", "disaster"), ("wildfire", "disaster"),
]

# Reranker
RERANKER_ENABLED = True
RERANKER_MAX_CANDIDATES = 80
RERANKER_MAX_CANDIDATES_MIN = 20
RERANKER_MAX_CANDIDATES_MAX = 200
RERANKER_MIN_WINDOW = 10  # Skip the oracle below this many candidates
RERANKER_TOP_K_MIN = 6
RERANKER_MODEL = "gpt-4o-mini"
RERANKER_BASE_URL = "https://api.openai.com"
RERANKER_TEMPERATURE = 0.1
RERANKER_TIMEOUT_SECONDS = 12.0
RERANKER_TIMEOUT_MIN_SECONDS = 4.0
RERANKER_TITLE_MAX_CHARS = 240
RERANKER_SUMMARY_MAX_CHARS = 320
RERANKER_MAX_TAGS = 8
RERANKER_MAX_REASONS = 3
RERANKER_DEFAULT_SCORE = 0.5
RERANKER_MIN_SCORE = 0.0001
RERANKER_RATE_LIMIT = 30  # Requests per minute

# Retry Policy (jittered exponential backoff)
RETRY_MAX_ATTEMPTS = 3
RETRY_BASE_DELAY = 0.25  # Seconds
RETRY_BACKOFF_FACTOR = 2.0
RETRY_JITTER_MAX = 0.12  # Seconds
RETRY_AFTER_MAX = 5.0  # Cap on server-provided Retry-After

# Reasons
MAX_REASONS = 4

# Trends
TREND_THRESHOLD = 3
TREND_NEW = "NEW"
TREND_UP = "UP"
TREND_DOWN = "DOWN"
TREND_STEADY = "STEADY"

# Personalization
DEFAULT_BLEND = 0.3
PERSONAL_TARGET_MIN = 3
PERSONAL_TARGET_MAX = 10
PERSONAL_TARGET_OFFSET = 5  # target = take - offset
PERSONAL_PER_SOURCE_CAP = 2
PERSONAL_PER_BUCKET_CAP = 12
PERSONAL_MIN_BUCKETS = 4
PERSONAL_MIN_DELTA_FROM_GLOBAL = 0.12
PERSONAL_BASE_RAW_WEIGHT = 0.7
PERSONAL_BASE_RECENCY_WEIGHT = 0.3
PERSONAL_RECENCY_MIN_HOURS = 0.25
PERSONAL_SAMPLE_POOL_MIN = 24
PERSONAL_SAMPLE_POOL_FACTOR = 4
PERSONAL_TEMPERATURE = 0.9
PERSONAL_MIN_SCORE = 0.0001
W_INTEREST_BASE = 1.05
W_INTEREST_SWING = 0.3
W_MOOD_BASE = 1.25
W_MOOD_SWING = 0.6
AGE_DAMP_HOURS = 6
AGE_DAMP_BASE = 0.92  # 0.92 at blend 0 -> 0.86 at blend 1
AGE_DAMP_SWING = 0.06
OFF_MOOD_THRESHOLD = 0.48
OFF_MOOD_PENALTY_COMFORT = 0.08
OFF_MOOD_PENALTY_CHALLENGE = 0.05
GLOBAL_OVERLAP_HEAT = 0.85
GLOBAL_OVERLAP_MOOD = 0.62
JITTER_MIN = 0.995
JITTER_SPAN = 0.01
REASON_TOPICS_OVERLAP = 0.15
REASON_MOOD_SCORE = 0.55
REASON_VIBE_SIMILARITY = 0.52

# Mood Scoring
MOOD_NEUTRAL = 0.5
MOOD_AFFINITY_SCALE = 0.4
MOOD_RECENCY_EXP = 0.35
MOOD_BLEND_RECENCY_BASE = 0.12
MOOD_BLEND_RECENCY_SWING = 0.18
MOOD_BLEND_RECENCY_CAP = 0.18
AROUSAL_FIT_WEIGHT = 0.1
AROUSAL_TARGET_COMFORT = 0.3  # Target arousal at blend 0
AROUSAL_TARGET_CHALLENGE = 0.7  # Target arousal at blend 1
LOOKBACK_MIN_HOURS = 3
LOOKBACK_MAX_HOURS = 8

# Learned Affinity
LEARNED_SUM_CLAMP = 6.0
LEARNED_TANH_SCALE = 4.0
LEARNED_MAX_BOOST = 0.5
VECTOR_WEIGHT_USER = 0.22
VECTOR_WEIGHT_GLOBAL = 0.18

# Online Learning
FEATURE_ALPHA = 0.35
CENTROID_ALPHA_USER_POSITIVE = 0.12
CENTROID_ALPHA_USER_NEGATIVE = 0.08
CENTROID_ALPHA_GLOBAL_POSITIVE = 0.03
GLOBAL_SCOPE = "GLOBAL"
TITLE_TOKEN_PATTERN = r"[a-z0-9+#]{3,}"
TITLE_TOKEN_MAX_CHARS = 24
PROFILE_QUERY_LIMIT = 800

# Inference
EMBEDDING_MIN_CLIP = 1e-9
EMBEDDING_MODEL = "text-embedding-3-small"
EMBEDDING_CACHE_MAX_ENTRIES = 1024
EMBEDDING_RATE_LIMIT = 60  # Requests per minute
INTEREST_MATCH_THRESHOLD = 0.23
INTEREST_LEXICAL_BOOST = 0.10
INTEREST_MAX_MATCHES = 10

# Store Limits
STORE_BATCH_SIZE = 10  # Max ids per batched lookup

# HTTP
HTTP_CONNECT_TIMEOUT = 10.0
HTTP_WRITE_TIMEOUT = 10.0
HTTP_POOL_TIMEOUT = 5.0
HTTP_USER_AGENT = "pulse-ranker/0.1"

# Cache Paths
DATA_DIR = ".cache/pulse"
SNAPSHOT_MAX_FILES = 60  # Day files retained
