"""Return codes and defaults shared by both executors."""

from __future__ import annotations

# Return value indicating everything is ok
RET_VAL_OK = 0

# A return code parameter held text that is neither empty, zero, nor numeric
RET_VAL_UNDEFINED_ERROR = -1

# Retries exhausted and the last failure was a deadlock
RET_VAL_DEADLOCK = -4

# Retries exhausted; typically caused by a timeout
RET_VAL_EXCESSIVE_RETRIES = -5

DEFAULT_RETRY_COUNT = 3
DEFAULT_RETRY_DELAY_SEC = 5

DEFAULT_SP_RETRY_COUNT = 3
DEFAULT_SP_RETRY_DELAY_SEC = 20
DEFAULT_SP_TIMEOUT_SEC = 30

MINIMUM_TIMEOUT_SEC = 10

# Name given to a legacy "@Return" parameter when calling a PostgreSQL procedure
POSTGRES_RETURN_CODE_PARAMETER = "_returnCode"

# Parameter names treated as the procedure's return code (case-insensitive)
RETURN_CODE_PARAMETER_NAMES = ("_returnCode", "@returnCode")
