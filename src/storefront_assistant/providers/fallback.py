"""Keyword-matching responder used when no model is reachable."""

import re
from dataclasses import dataclass

from storefront_assistant.telemetry import RULE_BASED_RESPONSE, get_logger

log = get_logger(__name__)

RULE_BASED_DISPLAY_NAME = "Built-in Assistant"

# Ordered: the first matching rule wins.
_RULES: tuple[tuple[tuple[str, ...], str], ...] = (
    (
        ("hello", "hi", "hey"),
        "Hello! Welcome to {store_name}. I'm here to help with questions about our products, "
        "orders or services. How can I assist you today?",
    ),
    (
        ("help",),
        "I'm here to help! I can assist you with:\n"
        "• Product information and recommendations\n"
        "• Order status and tracking\n"
        "• Shipping and delivery questions\n"
        "• Returns and exchanges\n"
        "• Account support\n\n"
        "What would you like to know more about?",
    ),
    (
        ("product", "products", "item", "items", "buy"),
        "I'd be happy to help you find the right product! You can browse the full catalog on "
        "our website, or tell me what kind of item you're looking for and I'll point you in "
        "the right direction.",
    ),
    (
        ("order", "orders", "shipping", "delivery"),
        "For order questions you can check your order status in your account dashboard. If you "
        "need help tracking a shipment or have questions about delivery times, I can guide you "
        "through it. What do you need to know?",
    ),
    (
        ("return", "returns", "refund", "exchange"),
        "Returns are accepted within 30 days of purchase. I can help you start a return or "
        "answer questions about the process. Would you like me to walk you through the steps?",
    ),
    (
        ("contact", "support", "phone"),
        "You can reach our customer support team at:\n"
        "• Email: {support_email}\n"
        "• Phone: {support_phone}\n"
        "• Hours: Monday-Friday 9AM-6PM\n\n"
        "Or I can try to help you right here! What do you need assistance with?",
    ),
    (
        ("bye", "goodbye", "thanks", "thank"),
        "Thank you for choosing {store_name}! Have a wonderful day, and don't hesitate to reach "
        "out if you need anything else.",
    ),
)

_DEFAULT_REPLY = (
    "Thank you for your question! Could you give me a bit more detail about what you're "
    "looking for? You can also browse our website or contact our support team at "
    "{support_email} for immediate assistance."
)

_APOLOGY = (
    "I apologize, but I'm having some technical difficulties with my AI assistant right now. "
    'You asked about "{utterance}". Could you rephrase your question, or let me know another '
    "way I can help?"
)


@dataclass(frozen=True)
class RuleBasedResponder:
    """Answers from fixed keyword rules; never fails.

    Attributes:
        store_name: Store name used in greetings.
        support_email: Support address quoted in replies.
        support_phone: Support number quoted in replies.
    """

    store_name: str = "our store"
    support_email: str = "support@example.com"
    support_phone: str = "1-800-555-0100"

    def respond(self, utterance: str, error: str | None = None) -> str:
        """Pick a canned reply for ``utterance``.

        Args:
            utterance: The customer's message.
            error: Failure description; when set, an apology quoting the question is returned.

        Returns:
            Reply text.
        """
        if error is not None:
            log.info(RULE_BASED_RESPONSE, rule="apology")
            return _APOLOGY.format(utterance=utterance.strip())

        words = set(re.findall(r"[a-z']+", utterance.lower()))
        for keywords, template in _RULES:
            if words.intersection(keywords):
                log.info(RULE_BASED_RESPONSE, rule=keywords[0])
                return self._render(template)

        log.info(RULE_BASED_RESPONSE, rule="default")
        return self._render(_DEFAULT_REPLY)

    def _render(self, template: str) -> str:
        return template.format(
            store_name=self.store_name,
            support_email=self.support_email,
            support_phone=self.support_phone,
        )
