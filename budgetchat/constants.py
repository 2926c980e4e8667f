# budgetchat protocol constants (line formats and limits)

DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 9999

# Server -> client lines
PROMPT_NICK = "Nick?\n"
ROSTER_PREFIX = "* The room contains: "
ROSTER_SEPARATOR = ", "
REJECT_PREFIX = "* Nick rejected: "

# Shape limits
NICK_MAX_CHARS = 128
MSG_MAX_BYTES = 1000

# Hard cap for a single transport line (nick or message). Longer input is cut
# and the remainder of the line discarded.
LINE_MAX_BYTES = 8192

# Nick character policies
NICK_POLICY_ALNUM = "alnum"
NICK_POLICY_PRINTABLE = "printable"
NICK_POLICIES = (NICK_POLICY_ALNUM, NICK_POLICY_PRINTABLE)

# Mailbox delivery policies
MAILBOX_BLOCK = "block"
MAILBOX_DROP = "drop"
MAILBOX_POLICIES = (MAILBOX_BLOCK, MAILBOX_DROP)

# Over-long message handling
OVERFLOW_TRUNCATE = "truncate"
OVERFLOW_CLOSE = "close"
OVERFLOW_POLICIES = (OVERFLOW_TRUNCATE, OVERFLOW_CLOSE)

# Reticulum destination
DEFAULT_DEST_NAME = "budgetchat.room"
RNS_STREAM_ID = 0
