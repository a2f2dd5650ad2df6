
# Sorted set, member=guild id, score=mark counter (ZINCRBY on every recordable event)
ACTIVE_GUILDS = "serverstats:active_guilds"

def K_MEMBERS(gid: int) -> str:
    """Total member counter key."""
    return f"serverstats:members:{gid}"

def K_JOINED(gid: int) -> str:
    """Members joined sorted set key (member=uid, score=timestamp)."""
    return f"serverstats:joined:{gid}"

def K_LEFT(gid: int) -> str:
    """Members left sorted set key (member=uid, score=timestamp)."""
    return f"serverstats:left:{gid}"

def K_ONLINE(gid: int) -> str:
    """Online members set key."""
    return f"serverstats:online:{gid}"

def K_MESSAGES(gid: int) -> str:
    """Message events sorted set key (member=channel:message:author, score=timestamp)."""
    return f"serverstats:messages:{gid}"

def K_CONFIG(gid: int) -> str:
    """Per-guild stats config hash key."""
    return f"serverstats:config:{gid}"


def encode_message_entry(channel_id: int, message_id: int, author_id: int) -> str:
    return f"{channel_id}:{message_id}:{author_id}"

def decode_message_entry(entry: str) -> tuple[int, int, int]:
    """Split a message entry back into (channel_id, message_id, author_id)."""
    parts = entry.split(":")
    if len(parts) != 3:
        raise ValueError(f"malformed message entry: {entry!r}")
    channel_id, message_id, author_id = (int(p) for p in parts)
    return channel_id, message_id, author_id
