def normalize(text: str) -> str:
    return " ".join((text or "").lower().split())
