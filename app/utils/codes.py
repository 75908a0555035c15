import secrets

# No 0/O/1/I so codes can be read back over the phone
CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"


def random_code(length: int = 4) -> str:
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


def generate_quote_number(length: int = 4) -> str:
    return f"QUO-{random_code(length)}"
