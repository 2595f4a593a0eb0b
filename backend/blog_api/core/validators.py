SPECIAL_CHARS = "!@#$%^&*()_+-="
MIN_PASSWORD_LENGTH = 6


def is_password_strong(password: str) -> bool:
    """At least six characters with an upper, a lower, a digit and a special character."""
    if len(password) < MIN_PASSWORD_LENGTH:
        return False
    has_special = any(c in SPECIAL_CHARS for c in password)
    has_digit = any(c in "0123456789" for c in password)
    has_upper = any("A" <= c <= "Z" for c in password)
    has_lower = any("a" <= c <= "z" for c in password)
    return has_special and has_digit and has_upper and has_lower


def is_valid_email(email: str) -> bool:
    parts = email.split("@")
    if len(parts) != 2:
        return False
    local, domain = parts
    if not local or not domain:
        return False
    domain_parts = domain.split(".")
    return len(domain_parts) == 2 and all(domain_parts)
