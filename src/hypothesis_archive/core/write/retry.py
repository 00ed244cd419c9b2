"""Bounded retry with capped exponential backoff."""

from dataclasses import dataclass

from hypothesis_archive.config import Config


@dataclass(frozen=True)
class RetryPolicy:
    attempts: int = 5
    base_delay: float = 0.5
    factor: float = 2.0
    max_delay: float = 30.0

    @classmethod
    def from_config(cls, config: Config) -> "RetryPolicy":
        return cls(
            attempts=config.retry_attempts,
            base_delay=config.retry_base_delay,
            factor=config.retry_factor,
            max_delay=config.retry_max_delay,
        )

    def delays(self) -> list[float]:
        """Sleep before each retry; one fewer entry than ``attempts``."""
        return [
            min(self.max_delay, self.base_delay * self.factor**n)
            for n in range(self.attempts - 1)
        ]
