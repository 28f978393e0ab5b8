# SPDX-License-Identifier: Apache-2.0
# Copyright 2025 Vova Orig


from .logger import (
    clear_correlation_id,
    correlation_scope,
    get_correlation_id,
    logger,
    set_correlation_id,
    setup_logging,
)
from .sensitive_filter import REDACTED, sanitize_mapping, sanitize_message

__all__ = [
    "REDACTED",
    "clear_correlation_id",
    "correlation_scope",
    "get_correlation_id",
    "logger",
    "sanitize_mapping",
    "sanitize_message",
    "set_correlation_id",
    "setup_logging",
]
