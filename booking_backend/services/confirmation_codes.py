import secrets


def generate_code(length: int = 4) -> str:
    return f'{secrets.randbelow(10 ** length):0{length}d}'


def codes_match(expected: str | None, submitted: str) -> bool:
    if not expected:
        return False
    return secrets.compare_digest(expected.encode(), submitted.strip().encode())
