from x402pay.policy.circuit_breaker import CircuitBreaker, SynchronizedCircuitBreaker
from x402pay.policy.engine import PolicyEngine

__all__ = ["CircuitBreaker", "PolicyEngine", "SynchronizedCircuitBreaker"]
