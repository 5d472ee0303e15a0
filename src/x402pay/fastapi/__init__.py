from x402pay.fastapi.middleware import require_payment

__all__ = ["require_payment"]
