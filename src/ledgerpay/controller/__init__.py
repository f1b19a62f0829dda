"""Payment controller and the components it composes."""

from ledgerpay.controller.controller import PaymentController
from ledgerpay.controller.state import ControllerConfig, ControllerState, FormInputs

__all__ = [
    "ControllerConfig",
    "ControllerState",
    "FormInputs",
    "PaymentController",
]
