"""Canonical keys for one-to-one conversations."""

KEY_DELIMITER = "-"


def conversation_key(user_a: str, user_b: str) -> str:
    """Return the key shared by both participants of a conversation.

    The two identities are sorted before joining, so
    ``conversation_key(a, b) == conversation_key(b, a)``.

    Example:
        >>> conversation_key("u2", "u1")
        'u1-u2'
    """
    return KEY_DELIMITER.join(sorted((user_a, user_b)))
