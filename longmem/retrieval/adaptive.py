"""
Adaptive retrieval: decide whether a query is worth a memory lookup at all
"""

import re

SKIP_PATTERNS = [
    re.compile(r"^(hi|hello|hey|good\s*(morning|afternoon|evening|night)|greetings|yo|sup|howdy|what'?s up)\b", re.IGNORECASE),
    re.compile(r"^/"),
    re.compile(r"^(run|build|test|ls|cd|git|npm|pip|docker|curl|cat|grep|find|make|sudo)\b", re.IGNORECASE),
    re.compile(
        r"^(yes|no|yep|nope|ok|okay|sure|fine|thanks|thank you|thx|ty|got it|understood|cool|nice|great|good"
        r"|perfect|awesome|\U0001F44D|\U0001F44E|✅|❌)\s*[.!]?$",
        re.IGNORECASE
    ),
    re.compile(r"^(go ahead|continue|proceed|do it|start|begin|next|实施|开始|继续|好的|可以|行)\s*[.!]?$", re.IGNORECASE),
    # Emoji-only messages
    re.compile(r"^[\s\u200d\ufe0f\u2600-\u27bf\u2b00-\u2bff\U0001F000-\U0001FAFF]+$"),
    re.compile(r"^HEARTBEAT", re.IGNORECASE),
    re.compile(r"^\[System", re.IGNORECASE),
]

FORCE_RETRIEVE_PATTERNS = [
    re.compile(r"\b(remember|recall|forgot|memory|memories)\b", re.IGNORECASE),
    re.compile(r"\b(last time|before|previously|earlier|yesterday|ago)\b", re.IGNORECASE),
    re.compile(r"\b(my (name|email|phone|address|birthday|preference))\b", re.IGNORECASE),
    re.compile(r"\b(what did (i|we)|did i (tell|say|mention))\b", re.IGNORECASE),
    re.compile(r"(你记得|之前|上次|以前|还记得|提到过|说过)"),
]

CJK_RE = re.compile(r"[\u4e00-\u9fff\u3040-\u309f\u30a0-\u30ff\uac00-\ud7af]")

MIN_QUERY_LENGTH = 15
MIN_CJK_QUERY_LENGTH = 6


def should_skip_retrieval(query: str) -> bool:
    """
    True when a message is unlikely to benefit from recalled memories.

    Memory-intent phrasing always retrieves. Greetings, commands,
    acknowledgements, emoji and system pings skip, as do short statements
    without a question mark.
    """
    trimmed = (query or "").strip()

    if any(pattern.search(trimmed) for pattern in FORCE_RETRIEVE_PATTERNS):
        return False

    if len(trimmed) < 5:
        return True

    if any(pattern.search(trimmed) for pattern in SKIP_PATTERNS):
        return True

    # CJK characters carry more meaning per character
    min_length = MIN_CJK_QUERY_LENGTH if CJK_RE.search(trimmed) else MIN_QUERY_LENGTH
    if len(trimmed) < min_length and "?" not in trimmed and "？" not in trimmed:
        return True

    return False
