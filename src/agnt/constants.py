"""Centralized constants for agnt.

Partition names and the schema marker define the on-disk layout; changing
them makes existing store files unreadable.
"""

# --- Store layout ---
DB_FILENAME = "agnt.db"
SCHEMA_VERSION = "v1"
VERSION_KEY = "version"

META_PARTITION = "__meta"
CHAT_PARTITION = "chats"
MESSAGE_PARTITION_PREFIX = "#MESSAGES#"
NODE_PARTITION = "graph:nodes"
EDGE_PARTITION = "graph:edges"

# Created on first run, in one transaction
FIXED_PARTITIONS = (CHAT_PARTITION, NODE_PARTITION, EDGE_PARTITION)

KEY_WIDTH = 8  # bytes, big-endian unsigned

# --- Chat state ---
CHAT_IDLE = "idle"
CHAT_RUNNING = "running"
CHAT_STATES = (CHAT_IDLE, CHAT_RUNNING)

# --- Generation defaults ---
DEFAULT_MODEL = "claude-3-5-sonnet-20241022"
DEFAULT_MAX_TOKENS = 4096
DEFAULT_MAX_TOOL_ROUNDS = 10
DEFAULT_HOME_DIRNAME = ".agnt"
CONFIG_FILENAME = "config.yaml"
LOG_FILENAME = "agnt.log"

TOOL_USE_ID_PREFIX = "tool_"
INCOMPLETE_TOOL_ERROR = "tool call did not complete"
TOOL_LIMIT_ERROR = "tool call limit reached for this turn"
