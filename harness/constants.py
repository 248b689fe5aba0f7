"""
harness/constants.py - Harness Constants and Enums

All defaults for hazard/deadline runs, motif encoding and statistics.
Centralized for tuning. Pure data, no behavior.
"""

from enum import Enum

# =============================================================================
# RUN SCHEDULE DEFAULTS
# =============================================================================

DEFAULT_STEPS = 2_000_000
DEFAULT_REPORT_EVERY = 5_000
DEFAULT_EVENT_EVERY = 50_000
DEFAULT_DEADLINE = 25_000
DEFAULT_TAIL_WINDOW = 200_000
DEFAULT_BURN_IN = 0
DEFAULT_GRID_SIZE = 32
W_PRE_MAX = 50_000  # pre window is min(W_PRE_MAX, deadline)
GRACE_FRACTION = 0.2  # tail uptime ignores ticks closer than 0.2 * deadline to an event

# =============================================================================
# HAZARD / PERTURBATION DEFAULTS
# =============================================================================

DEFAULT_REGION_TYPE = "quadrant"
DEFAULT_REGION_INDEX = 2
DEFAULT_CORRUPT_FRAC = 0.2
DEFAULT_PERTURB_MODE = "randomize"
PERTURB_TARGET = "metaS"
PERTURB_LAYER = 0
PERTURB_SEED_STRIDE = 1000  # perturb seed = run seed * stride + t_event
OUTSIDE_SEED_OFFSET = 999  # matched outside mask seed = run seed + offset
REGION_TYPES = ("quadrant", "stripe")
PERTURB_MODES = ("randomize", "flip")
N_QUADRANTS = 4

# =============================================================================
# GOODNESS THRESHOLDS
# =============================================================================

DEFAULT_ERR_GOOD = 0.1
DEFAULT_SDIFF_GOOD = 1.0
ERR_MODE_BITS = "bits"  # per-quadrant logical bits over the hazard mask
ERR_MODE_QUADRANT_MEAN = "quadrant_mean"
ERR_MODE_SAMPLED = "sampled"  # bits over 20 Bernoulli(0.5) sub-samples
ERR_MODES = (ERR_MODE_BITS, ERR_MODE_QUADRANT_MEAN, ERR_MODE_SAMPLED)

# =============================================================================
# GATE CONDITIONING
# =============================================================================

DEFAULT_CLOCK_K = 8
GATE_MODE_OPEN = 0
GATE_MODE_CLOCK_K = 1
GATE_MODE_CLOCK_4 = 2
GATE_MODES = (GATE_MODE_OPEN, GATE_MODE_CLOCK_K, GATE_MODE_CLOCK_4)
GATE_MODE2_WIDTH = 4
DEFAULT_GATE_CHECK_EVERY = 5_000

# =============================================================================
# MOTIF ENCODING
# =============================================================================

DEFAULT_OP_BINS_MODE = 2
OP_STATE_COUNTS = {0: 729, 1: 27, 2: 81}
DIR9_COUNT = 9
ENTROPY_BIN_CUTS = (0.33, 0.66)  # normalized direction entropy -> 3 bins

# Axis-mass thresholding policies for operator motifs in mode 0
AXIS_POLICY_FRACTION = "fraction"  # mass / budget vs (1/6, 2/6)
AXIS_POLICY_RAW = "raw"  # raw token count vs (0, 3)
AXIS_POLICY_TIGHT = "tight"  # mass / budget vs (0.08, 0.16)
AXIS_POLICIES = (AXIS_POLICY_FRACTION, AXIS_POLICY_RAW, AXIS_POLICY_TIGHT)
AXIS_THRESHOLDS = {
    AXIS_POLICY_FRACTION: (1.0 / 6.0, 2.0 / 6.0),
    AXIS_POLICY_RAW: (0.0, 3.0),
    AXIS_POLICY_TIGHT: (0.08, 0.16),
}

# =============================================================================
# STATISTICS
# =============================================================================

COARSE_EP_ALPHA = 0.5
JSD_EPS = 1e-12
TOP_MASS_N = 10
PERCENTILE_P95 = 0.95

# =============================================================================
# BOOTSTRAP
# =============================================================================

BOOTSTRAP_SAMPLES = 2000
BOOTSTRAP_SEED = 12345
BOOTSTRAP_DIFF_SEED_OFFSET = 1234
CI_LOW_Q = 0.025
CI_HIGH_Q = 0.975

# Run counted as a success when all three hold
SUCCESS_MAX_MISS_FRAC = 0.2
SUCCESS_MIN_TAIL_UPTIME = 0.8
SUCCESS_MAX_TAIL_ERR = 0.05

# =============================================================================
# ORACLE MOVE LABELS
# =============================================================================

MOVE_P5_BASE = "P5Base"
MOVE_P5_META = "P5Meta"
MOVE_OPK = "OpK"
MOVE_CLOCK = "Clock"
REQUIRED_MOVE_LABELS = (MOVE_P5_BASE, MOVE_P5_META, MOVE_OPK, MOVE_CLOCK)
REPAIR_MOVE_LABELS = (MOVE_P5_BASE, MOVE_P5_META)

# =============================================================================
# ACCEPT LOG
# =============================================================================

ACCEPT_LOG_CAP = 200_000
CHUNK_STEPS = 10_000
ACCEPT_LOG_MASK_BITS = 32

# =============================================================================
# SPARSE-SIGNAL MARKERS
# =============================================================================

MIN_GATE_SAMPLES = 10
MIN_UNIQUE_OP_STATES = 10
MIN_CHANGE_FRAC = 0.01
FLAG_SPARSE_GATE_SAMPLES = "MOTIF_INSTRUMENTATION_TOO_SPARSE_GATE_SAMPLES"
FLAG_RECOVERY_UNOBSERVED = "RECOVERY_WINDOW_UNOBSERVED"
FLAG_OP_COLLAPSED = "MOP_COLLAPSED"
VERDICT_PLAUSIBLE = "MOTIF_SIGNAL_PLAUSIBLE"
VERDICT_SPARSE = "MOTIF_INSTRUMENTATION_TOO_SPARSE"

# =============================================================================
# RECEIPT TYPES
# =============================================================================

RECEIPT_SCHEMA = [
    "hazard_injected",
    "event_outcome",
    "gate_closed",
    "anomaly",
    "run_summary",
    "aggregate_summary",
]


# =============================================================================
# ENUMS
# =============================================================================

class Outcome(Enum):
    """Hazard event lifecycle states. PENDING is the only non-terminal one."""
    PENDING = "pending"
    RECOVERED = "recovered"
    MISSED = "missed"


class Window(Enum):
    """Sample windows relative to an event's trigger time."""
    PRE = "pre"
    RECOVERY = "recovery"
    TAIL = "tail"


class Scope(Enum):
    """Mask scope a count or transition belongs to."""
    HAZARD = "hazard"
    OUTSIDE = "outside"


class Family(Enum):
    """Motif family."""
    BASE = "base"
    OP = "op"


# Short names used in exported row keys
WINDOW_PREFIX = {Window.PRE: "pre", Window.RECOVERY: "rec", Window.TAIL: "tail"}
CHANNELS = (
    (Family.BASE, Scope.HAZARD),
    (Family.BASE, Scope.OUTSIDE),
    (Family.OP, Scope.HAZARD),
    (Family.OP, Scope.OUTSIDE),
)
