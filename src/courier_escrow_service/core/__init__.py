"""Core infrastructure components."""

from courier_escrow_service.core.exceptions import ServiceError
from courier_escrow_service.core.state import AppState, get_app_state, init_app_state

__all__ = ["AppState", "ServiceError", "get_app_state", "init_app_state"]
