# /convoflow/config/rules.py

# This file contains the keyword tables used by the default classification
# provider. Rules are processed in order, defining their priority: the first
# intent whose keywords or phrases appear in the message wins.

import re

# Precompiled regex for tokenizing
WORD_RE = re.compile(r"\w+")

# Each rule is a tuple: ({single_word_tokens}, [multi_word_phrases], "intent_name")
INTENT_RULES = [
    # Group 1: Escalation & complaints
    ({"human", "agent", "representative", "supervisor"}, ["talk to human", "speak to a person", "customer service"], "human_escalation"),
    ({"complaint", "complain", "unacceptable", "terrible", "damaged", "broken", "defective"}, ["not satisfied", "wrong item", "poor quality"], "complaint"),

    # Group 2: Transactional
    ({"order", "orders", "tracking", "track", "shipped", "delivery", "status"}, ["where is my order", "order status", "track my order"], "order_inquiry"),
    ({"return", "refund", "exchange"}, ["send it back", "money back"], "return_request"),

    # Group 3: Informational
    ({"product", "products", "price", "available", "stock", "specs", "specifications"}, ["how much", "in stock", "looking for"], "product_inquiry"),
    ({"hi", "hello", "hey", "morning", "evening"}, ["good morning", "good evening"], "greeting"),
]

# Sentiment word lists; negative wins when both appear
NEGATIVE_WORDS = {
    "bad", "terrible", "awful", "angry", "upset", "worst", "hate", "disappointed",
    "unhappy", "problem", "issue", "broken", "damaged", "late", "never", "complaint",
}
POSITIVE_WORDS = {
    "good", "great", "thanks", "thank", "love", "excellent", "happy", "perfect", "awesome",
}
