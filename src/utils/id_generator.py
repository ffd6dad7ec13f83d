import secrets
import string

ALPHABET = string.ascii_lowercase + string.digits


def generate_id(length: int) -> str:
    """소문자와 숫자로 이루어진 암호학적으로 안전한 랜덤 문자열을 생성합니다."""
    if length < 1:
        raise ValueError("length must be a positive integer.")
    return ''.join(secrets.choice(ALPHABET) for _ in range(length))


def generate_slug() -> str:
    """환경의 공개 식별자 (예: 'env_a1b2c3d4')"""
    return f"env_{generate_id(8)}"


def generate_access_token() -> str:
    return generate_id(32)
