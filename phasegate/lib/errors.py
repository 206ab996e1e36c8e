"""
Error taxonomy for phasegate.

Every protocol violation raised by the engine derives from PhaseGateError.
Rejection verdicts are outcomes, not errors, and never appear here.
"""


class PhaseGateError(Exception):
    """Base class for all engine errors. Terminal for the triggering call."""
    pass


class ConflictError(PhaseGateError):
    """An identity (document sequence, request, verdict) is already taken."""
    pass


class AlreadyExistsError(ConflictError):
    """Feature or workspace already exists."""
    pass


class NotFoundError(PhaseGateError):
    """Unknown feature, workspace or document."""
    pass


class AccessDeniedError(PhaseGateError):
    """Isolation violation: the acting role may not touch this workspace."""

    def __init__(self, acting_role: str, target: str, action: str = "read"):
        self.acting_role = acting_role
        self.target = target
        self.action = action
        super().__init__(f"Access denied: '{acting_role}' may not {action} {target}")


class InvalidTransitionError(PhaseGateError):
    """Operation is illegal for the current phase state."""

    def __init__(self, from_state: str, trigger: str, ws_key: str = "", message: str = ""):
        self.from_state = from_state
        self.trigger = trigger
        self.ws_key = ws_key
        text = message or f"Invalid transition: cannot {trigger} from {from_state}"
        super().__init__(text + (f" (workspace: {ws_key})" if ws_key else ""))


class InvalidVerdictError(InvalidTransitionError):
    """Verdict refused at the boundary (e.g. rejection without feedback items)."""

    def __init__(self, message: str, ws_key: str = ""):
        super().__init__("submitted_for_review", "record_verdict", ws_key, message=message)


class StaleIterationError(PhaseGateError):
    """Verdict targets an iteration that is no longer the latest."""

    def __init__(self, iteration: int, latest: int, ws_key: str = ""):
        self.iteration = iteration
        self.latest = latest
        super().__init__(
            f"Iteration {iteration:02d} is stale; latest is {latest:02d}"
            + (f" (workspace: {ws_key})" if ws_key else "")
        )


class FeatureAbandonedError(PhaseGateError):
    """Feature was abandoned; no further work may be recorded against it."""

    def __init__(self, feature_id: str):
        self.feature_id = feature_id
        super().__init__(f"Feature '{feature_id}' has been abandoned")


class InvalidGrantError(PhaseGateError):
    """Handoff grant crosses features, targets itself, or has a non-coordinator grantor."""
    pass


class CorruptDocumentError(PhaseGateError):
    """Stored payload does not match its recorded digest."""
    pass
