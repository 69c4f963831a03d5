#Expose the high-level lifecycle pieces:
#Transition validation (the state machine)
#Status Mutation Gateway (the "one call" entry point for every status write)
#Assignment Coordinator (single active delivery per rider, swap saga)

from .state_machines.order_state import TransitionDecision, validate_transition
from .gateway import LocalOrderSession, StatusMutationGateway #the main entry point for any status change
from .coordinator import AssignmentCoordinator, SwapRecord, SwapStage

__all__ = [
    "TransitionDecision",
    "validate_transition",
    "StatusMutationGateway",
    "LocalOrderSession",
    "AssignmentCoordinator",
    "SwapRecord",
    "SwapStage",
]
