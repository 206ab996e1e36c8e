"""Shared constants for phasegate."""

import re

# Feature IDs are "<domain>-<sequence>", e.g. tasks-001
FEATURE_ID_PATTERN = re.compile(r'^[a-z][a-z0-9_]*-\d{3,}$')
MAX_FEATURE_ID_LEN = 40

ROLE_ID_PATTERN = re.compile(r'^[a-z][a-z0-9_]*$')

# The single privileged role. Never allowed in a phase sequence.
COORDINATOR = "coordinator"

# Document kinds, in the order they appear in a workspace
KIND_REQUEST = "request"
KIND_ITERATION = "iteration"
KIND_HANDOFF = "handoff"
DOCUMENT_KINDS = (KIND_REQUEST, KIND_ITERATION, KIND_HANDOFF)

# Zero-padding used when displaying sequence numbers (iteration-02, handoff-001)
SEQUENCE_WIDTH = {
    KIND_REQUEST: 3,
    KIND_ITERATION: 2,
    KIND_HANDOFF: 3,
}

SEVERITIES = ("CRITICAL", "HIGH", "MEDIUM", "LOW")

OUTCOME_APPROVED = "approved"
OUTCOME_REJECTED = "rejected"
OUTCOMES = (OUTCOME_APPROVED, OUTCOME_REJECTED)

CHECK_HUMAN = "human"
CHECK_AUTOMATED = "automated"
CHECKS = (CHECK_HUMAN, CHECK_AUTOMATED)

REVIEW_MODE_SINGLE = "single"
REVIEW_MODE_DUAL = "dual"
VALID_REVIEW_MODES = {REVIEW_MODE_SINGLE, REVIEW_MODE_DUAL}
