"""Phase lifecycle: state machine, review gate, handoffs and the coordinator."""
