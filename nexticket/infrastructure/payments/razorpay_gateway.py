# nexticket/infrastructure/payments/razorpay_gateway.py

import logging

import razorpay

from nexticket import config
from nexticket.domain.exceptions import (
    IntentCreationFailedError,
    PaymentConfirmationFailedError,
)

logger = logging.getLogger(__name__)


class RazorpayGateway:
    """
    Backend side of the processor handshake.

    A Razorpay order plays the role of the payment intent: its id is the
    opaque secret the client hands to the checkout widget.
    """

    def __init__(self, client: razorpay.Client, currency: str = config.PAYMENT_CURRENCY):
        self.client = client
        self.currency = currency

    @classmethod
    def from_env(cls) -> "RazorpayGateway":
        if not config.RAZORPAY_KEY_ID or not config.RAZORPAY_KEY_SECRET:
            raise IntentCreationFailedError(
                "Razorpay keys not configured. Set RAZORPAY_KEY_ID and RAZORPAY_KEY_SECRET."
            )
        client = razorpay.Client(auth=(config.RAZORPAY_KEY_ID, config.RAZORPAY_KEY_SECRET))
        return cls(client)

    def create_intent(self, amount_minor: int, receipt: str) -> str:
        try:
            order = self.client.order.create(
                {
                    "amount": amount_minor,
                    "currency": self.currency,
                    "receipt": receipt,
                }
            )
        except Exception as exc:
            logger.exception("Razorpay order creation failed. receipt=%s", receipt)
            raise IntentCreationFailedError("Failed to initialize payment") from exc

        order_id = order.get("id")
        if not order_id:
            raise IntentCreationFailedError("Processor returned no order id")
        return order_id

    def verify_signature(self, order_id: str, payment_id: str, signature: str) -> None:
        try:
            self.client.utility.verify_payment_signature(
                {
                    "razorpay_order_id": order_id,
                    "razorpay_payment_id": payment_id,
                    "razorpay_signature": signature,
                }
            )
        except razorpay.errors.SignatureVerificationError as exc:
            raise PaymentConfirmationFailedError("Invalid payment signature") from exc
