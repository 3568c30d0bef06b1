from enum import Enum


class PricingBehavior(str, Enum):
    NORMAL_PRICES = "normal_prices"
    ALL_QUOTE = "all_quote"
    LEAD_TIME_PRICING = "lead_time_pricing"

    def __str__(self):
        return self.value


class OptionType(str, Enum):
    FIXED = "fixed"
    PERCENT = "percent"

    def __str__(self):
        return self.value


class LeadTimeMode(str, Enum):
    IMMEDIATE = "immediate"
    RESERVATION = "reservation"

    def __str__(self):
        return self.value


class ChatRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"

    def __str__(self):
        return self.value


class OptionsDecision(str, Enum):
    UNKNOWN = ""
    NONE = "none"
    SOME = "some"

    def __str__(self):
        return self.value


class ConversationState(str, Enum):
    MISSING_ROUTE = "missing_route"
    OPTIONS_DECISION = "options_decision"
    COUNTS_PENDING = "counts_pending"
    RECOMMEND = "recommend"
    FREEFORM = "freeform"

    def __str__(self):
        return self.value
