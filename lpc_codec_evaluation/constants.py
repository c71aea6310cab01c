# Defaults and fixed-point limits shared by the codec, the evaluator and the CLI.

ORDER_DEFAULT = 10  # LPC prediction order
LOSS_RATE_DEFAULT = 0.1  # probability that a unit of the coded stream is erased
BITRATE_DEFAULT = 64  # kbps, reported only

# 16-bit signed fixed point
INT16_MIN = -(2 ** 15)
INT16_MAX = 2 ** 15 - 1
INT16_LEVELS = 2 ** 16
COEFFICIENT_SCALE = 2 ** 15  # Q15 coefficients
RESIDUAL_SCALE = 1  # residual samples are rounded without scaling

# channel erasure units
GRANULARITIES = ["bit", "codeword"]
GRANULARITY_DEFAULT = "bit"

# what the evaluator does when the reconstruction length differs from the original
MISMATCH_POLICIES = ["truncate", "pad", "skip"]
MISMATCH_POLICY_DEFAULT = "truncate"

# results
STATUS_OK = "ok"
STATUS_DEGRADED = "degraded"
STATUS_FAILED = "failed"

# files
WAV_EXTENSION = ".wav"
PAYLOAD_EXTENSION = ".lpch"
RECONSTRUCTED_SUFFIX = "_reconstructed"
PLOT_SUFFIX = "_reconstruction.png"

# decoded samples saturate like 16-bit PCM
RECONSTRUCTION_BOUNDS = (INT16_MIN, INT16_MAX)
