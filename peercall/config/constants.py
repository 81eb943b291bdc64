"""
Protocol-level constants shared by the client and the relay.

Note: Environment-dependent settings (URLs, Redis, devices, secrets) belong in
settings.py. This file holds wire names and values that never change between
environments.
"""

# ==============================================================================
# SERVER-PUSH EVENTS
# ==============================================================================

# Named events on the text/event-stream channel
EVENT_CONNECT: str = "connect"
EVENT_USER_LIST: str = "user_list"
EVENT_SIGNAL: str = "signal"
EVENT_PING: str = "ping"

# Payload of the keep-alive event
PING_PAYLOAD: str = "keep-alive"

# ==============================================================================
# RELAY ENDPOINTS
# ==============================================================================

SSE_SUBSCRIBE_PATH: str = "/sse/subscribe"
SSE_SIGNAL_PATH: str = "/sse/signal"
SSE_LOGOUT_PATH: str = "/sse/logout"

# ==============================================================================
# SIGNAL PAYLOADS
# ==============================================================================

# Placeholder carried by HANGUP / BUSY / REJECT
EMPTY_SIGNAL_DATA: str = "{}"

# Sender name the chat log uses for locally typed messages
LOCAL_CHAT_SENDER: str = "ME"

# ==============================================================================
# CALL INTENT KEYS
# ==============================================================================

INTENT_TARGET_KEY: str = "call_target"
INTENT_INITIATOR_KEY: str = "call_initiator"
INTENT_OFFER_KEY: str = "call_offer"
INTENT_CANDIDATES_KEY: str = "call_candidates"

INTENT_KEYS: tuple = (
    INTENT_TARGET_KEY,
    INTENT_INITIATOR_KEY,
    INTENT_OFFER_KEY,
    INTENT_CANDIDATES_KEY,
)
