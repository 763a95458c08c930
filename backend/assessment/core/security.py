"""
Test password hashing.
"""
import bcrypt


def hash_password(password: str) -> str:
    """
    Hash a plain text test password using bcrypt.

    Args:
        password: Plain text password to hash

    Returns:
        Hashed password string, suitable for TestConfig.password_hash
    """
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """
    Verify a plain text password against a hashed password.

    Returns:
        True if password matches, False otherwise (including a malformed hash)
    """
    try:
        return bcrypt.checkpw(
            plain_password.encode("utf-8"), hashed_password.encode("utf-8")
        )
    except ValueError:
        return False
